"""
Batch driver: fill a compute batch, flush on overflow, retry the overflowing group.

State machine per driver run:

    IDLE -> FILLING           first add attempt
    FILLING -> FILLING        group accepted, or rejected for a non-capacity reason
    FILLING -> OVERFLOWED     batch full (EXCEEDED_MAXIMUM_POAS) or last id attempted
    OVERFLOWED -> PROCESSING  batch holds >= 1 group: compute + harvest + reset
    OVERFLOWED -> FILLING     batch empty: the group can never fit, skip it
    PROCESSING -> FILLING     ids remain (an overflowing group is retried)
    PROCESSING -> DONE        ids exhausted

The OVERFLOWED -> FILLING edge always advances the cursor, so a group that
does not fit an empty batch cannot stall the run.
"""

import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence as SequenceT, Tuple

from .engine import AddResult, BatchError, ComputeBatch, StatusType
from .harvester import GroupResult, ResultHarvester
from .workload import Group


class DriverState(Enum):
    IDLE = "idle"
    FILLING = "filling"
    OVERFLOWED = "overflowed"
    PROCESSING = "processing"
    DONE = "done"


class Disposition(Enum):
    """How a group left the driver."""
    PROCESSED = "processed"    # harvested with SUCCESS
    FAILED = "failed"          # rejected at add time, or harvested with an error
    SKIPPED = "skipped"        # does not fit an empty batch of this configuration


@dataclass
class GroupOutcome:
    """Final report for one group; exactly one per group id per run."""
    group_id: int
    position: int                  # index in the pair's id list
    batch_index: int
    status: StatusType
    disposition: Disposition
    add_status: StatusType
    dropped_sequences: List[int] = field(default_factory=list)
    result: Optional[GroupResult] = None
    flush_index: Optional[int] = None


@dataclass
class FlushReport:
    """One compute + harvest + reset round."""
    batch_index: int
    flush_index: int
    first: int                     # reported range, run positions (offset applied)
    last: int
    group_ids: List[int]
    error: Optional[str] = None
    graphs: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.group_ids)


@dataclass
class DriverRun:
    """Everything one driver run reported."""
    batch_index: int
    outcomes: List[GroupOutcome] = field(default_factory=list)
    flushes: List[FlushReport] = field(default_factory=list)
    states: List[DriverState] = field(default_factory=list)

    @property
    def statuses(self) -> List[Tuple[int, StatusType]]:
        """(group id, final status) in the order the ids were given."""
        return [(o.group_id, o.status) for o in sorted(self.outcomes, key=lambda o: o.position)]


class BatchDriver:
    """
    Drives one compute batch over the ordered group ids of one plan pair.

    Args:
        harvester: Result harvester (consensus or MSA mode)
        compute_timeout: Seconds to wait for compute; expiry fails the flush
        emit_graphs: Collect and print each group's graph in DOT form on every flush
        print_results: Print consensus / MSA rows to stdout
    """

    def __init__(
        self,
        harvester: ResultHarvester,
        compute_timeout: Optional[float] = None,
        emit_graphs: bool = False,
        print_results: bool = False,
    ):
        self.harvester = harvester
        self.compute_timeout = compute_timeout
        self.emit_graphs = emit_graphs
        self.print_results = print_results

    def run(
        self,
        batch: ComputeBatch,
        group_ids: SequenceT[int],
        groups: SequenceT[Group],
        batch_index: int = 0,
        offset: int = 0,
    ) -> DriverRun:
        """
        Offer every group id to the batch, flushing whenever it overflows.

        Args:
            batch: Compute batch of this pair's configuration, empty on entry
            group_ids: Group ids of the pair, in order
            groups: Whole workload, indexed by group id
            batch_index: Pair index, used in reports
            offset: Groups processed before this pair, added to reported ranges

        Returns:
            DriverRun with one outcome per id and one report per flush
        """
        return self._run(batch, list(group_ids), groups, batch_index, offset)

    def _run(self, batch, group_ids, groups, batch_index, offset) -> DriverRun:
        run = DriverRun(batch_index=batch_index)
        n = len(group_ids)

        state = DriverState.IDLE
        i = 0                  # cursor into group_ids
        flush_start = 0        # first position of the current round
        pending: List[Tuple[int, int, AddResult]] = []   # accepted this round
        add: Optional[AddResult] = None

        while state is not DriverState.DONE:
            run.states.append(state)

            if state in (DriverState.IDLE, DriverState.FILLING):
                if i >= n:
                    state = DriverState.DONE
                    continue
                state = DriverState.FILLING

                group_id = group_ids[i]
                add = batch.add_group(groups[group_id])

                if add.accepted:
                    pending.append((i, group_id, add))
                    self._report_drops(group_id, add)

                if add.status is StatusType.EXCEEDED_MAXIMUM_POAS or i == n - 1:
                    state = DriverState.OVERFLOWED
                    continue

                if not add.accepted:
                    run.outcomes.append(self._reject(group_id, i, batch_index, add))
                i += 1

            elif state is DriverState.OVERFLOWED:
                if batch.accepted_count > 0:
                    state = DriverState.PROCESSING
                    continue

                # Nothing buffered: this group does not fit even an empty batch
                run.outcomes.append(self._reject(group_ids[i], i, batch_index, add))
                i += 1
                flush_start = i
                state = DriverState.FILLING

            elif state is DriverState.PROCESSING:
                # An overflowing add is excluded from this round and retried
                last = i if add.accepted else i - 1
                flush = self._flush(
                    batch, pending, run, batch_index,
                    first=flush_start + offset, last=last + offset,
                )
                run.flushes.append(flush)
                pending = []
                flush_start = last + 1

                if add.accepted:
                    i += 1
                elif add.status is not StatusType.EXCEEDED_MAXIMUM_POAS:
                    run.outcomes.append(self._reject(group_ids[i], i, batch_index, add))
                    i += 1

                state = DriverState.FILLING if i < n else DriverState.DONE

        run.states.append(DriverState.DONE)
        return run

    # --- helpers ---------------------------------------------------------

    def _reject(self, group_id: int, position: int, batch_index: int, add: AddResult) -> GroupOutcome:
        if add.status is StatusType.EXCEEDED_MAXIMUM_POAS:
            print(f"Could not add POA group {group_id} to batch {batch_index}")
            disposition = Disposition.SKIPPED
        else:
            detail = f" ({add.reason})" if add.reason else ""
            print(f"Could not add POA group {group_id} to batch {batch_index}. Error code {add.status}{detail}")
            disposition = Disposition.FAILED

        return GroupOutcome(
            group_id=group_id,
            position=position,
            batch_index=batch_index,
            status=add.status,
            disposition=disposition,
            add_status=add.status,
            dropped_sequences=add.dropped_sequences,
        )

    def _report_drops(self, group_id: int, add: AddResult) -> None:
        for k in add.dropped_sequences:
            print(
                f"Dropping sequence {k} of POA group {group_id} because sequence exceeded maximum size",
                file=sys.stderr,
            )

    def _flush(self, batch, pending, run: DriverRun, batch_index: int, first: int, last: int) -> FlushReport:
        flush_index = len(run.flushes)
        label = f"{batch_index}.{flush_index}"

        results, error = self._compute_and_harvest(batch, label)

        graphs = []
        if self.emit_graphs and error is None:
            try:
                graph_objects, _ = batch.get_graphs()
                graphs = [g.serialize_to_dot() for g in graph_objects]
            except BatchError as e:
                print(f"Could not generate graphs for batch {label} : {e}", file=sys.stderr)

        batch.reset()

        for (position, group_id, add), result in zip(pending, results):
            ok = result.status is StatusType.SUCCESS
            if not ok:
                print(
                    f"Error generating {self.harvester.mode_name} for POA group {group_id}. "
                    f"Error type {result.status}",
                    file=sys.stderr,
                )
            elif self.print_results:
                self._print_result(result)

            run.outcomes.append(GroupOutcome(
                group_id=group_id,
                position=position,
                batch_index=batch_index,
                status=result.status,
                disposition=Disposition.PROCESSED if ok else Disposition.FAILED,
                add_status=add.status,
                dropped_sequences=add.dropped_sequences,
                result=result,
                flush_index=flush_index,
            ))

        for dot in graphs:
            print(dot)

        print(f"Processed groups {first} - {last} (batch {batch_index})")

        return FlushReport(
            batch_index=batch_index,
            flush_index=flush_index,
            first=first,
            last=last,
            group_ids=[group_id for _, group_id, _ in pending],
            error=error,
            graphs=graphs,
        )

    def _compute_and_harvest(self, batch: ComputeBatch, label: str) -> Tuple[List[GroupResult], Optional[str]]:
        try:
            self._run_compute(batch)
        except TimeoutError:
            error = f"compute did not finish within {self.compute_timeout}s"
            return self.harvester.fail_all(batch.accepted_count, error, label), error
        except BatchError as e:
            return self.harvester.fail_all(batch.accepted_count, str(e), label), str(e)

        return self.harvester.harvest(batch, label)

    def _run_compute(self, batch: ComputeBatch) -> None:
        if self.compute_timeout is None:
            batch.run_compute()
            return

        errors: List[Exception] = []

        def target():
            try:
                batch.run_compute()
            except Exception as e:
                errors.append(e)

        # daemon: an abandoned compute must not hold up interpreter exit
        worker = threading.Thread(target=target, name="poa-compute", daemon=True)
        worker.start()
        worker.join(self.compute_timeout)

        if worker.is_alive():
            raise TimeoutError(f"compute did not finish within {self.compute_timeout}s")
        if errors:
            raise errors[0]

    @staticmethod
    def _print_result(result: GroupResult) -> None:
        if result.alignment is not None and result.consensus is None:
            for row in result.alignment:
                print(row)
        elif result.consensus is not None:
            print(result.consensus)
