"""
Run coordinator: plan the workload, then drive one compute batch per plan pair.

Sequential by default: one batch is opened, filled, flushed and released
before the next pair starts. With several devices, pairs run concurrently,
each bound exclusively to one device for its whole duration.
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence as SequenceT

from .config import CapacityConfig, RunConfig
from .driver import BatchDriver, Disposition, DriverRun, FlushReport, GroupOutcome
from .engine import (
    ComputeBatch,
    DeviceContext,
    ResourceAcquisitionError,
    StatusType,
    create_batch,
    open_devices,
)
from .harvester import ResultHarvester
from .planner import CapacityPlanner, Plan, validate_plan
from .workload import Group


BatchFactory = Callable[[DeviceContext, RunConfig, CapacityConfig], ComputeBatch]


@dataclass
class RunResult:
    """Outcome of a whole run."""
    num_groups: int
    plan: Plan
    driver_runs: List[DriverRun] = field(default_factory=list)

    @property
    def outcomes(self) -> List[GroupOutcome]:
        return [o for r in self.driver_runs for o in r.outcomes]

    @property
    def flushes(self) -> List[FlushReport]:
        return [f for r in self.driver_runs for f in r.flushes]

    def status_by_group(self) -> Dict[int, StatusType]:
        return {o.group_id: o.status for o in self.outcomes}

    def count(self, disposition: Disposition) -> int:
        return sum(1 for o in self.outcomes if o.disposition is disposition)


class RunCoordinator:
    """
    Runs a workload through the planner, batch driver and harvester.

    Args:
        cfg: Run configuration
        batch_factory: Creates a compute batch for (device, cfg, capacity)
    """

    def __init__(self, cfg: RunConfig, batch_factory: BatchFactory = create_batch):
        self.cfg = cfg
        self.batch_factory = batch_factory
        self.harvester = ResultHarvester(msa=cfg.MSA)

    def run(self, groups: SequenceT[Group], plan: Optional[Plan] = None) -> RunResult:
        """
        Process every group of the workload.

        Args:
            groups: Workload, group id = list index
            plan: Precomputed plan (validated), or None to plan here

        Returns:
            RunResult with exactly one outcome per group

        Raises:
            ResourceAcquisitionError: No device or batch could be created
        """
        devices = open_devices(self.cfg)

        if plan is None:
            budget = min(self.cfg.memory_budget(d.free_memory) for d in devices)
            plan = CapacityPlanner(self.cfg, budget).plan(groups)
        else:
            validate_plan(plan, len(groups))

        print(f"Planned {len(groups)} POA groups into {len(plan)} batch configuration(s)")
        for b, entry in enumerate(plan):
            print(f"  Batch {b}: {len(entry)} groups, {entry.config.describe()}")

        # Offsets only feed progress lines; they are fixed by the plan
        offsets = []
        offset = 0
        for entry in plan:
            offsets.append(offset)
            offset += len(entry)

        result = RunResult(num_groups=len(groups), plan=plan)

        if len(devices) == 1 or len(plan) <= 1:
            for b, entry in enumerate(plan):
                result.driver_runs.append(self._run_pair(devices[0], entry, groups, b, offsets[b]))
        else:
            result.driver_runs = self._run_parallel(devices, plan, groups, offsets)

        processed = result.count(Disposition.PROCESSED)
        print(f"Finished: {processed}/{len(groups)} groups processed in {len(result.flushes)} flushes")
        return result

    @contextmanager
    def acquire_batch(self, device: DeviceContext, capacity: CapacityConfig) -> Iterator[ComputeBatch]:
        """Create a batch for one pair; it is reset and closed on every exit path."""
        batch = self.batch_factory(device, self.cfg, capacity)
        try:
            yield batch
        finally:
            batch.reset()
            batch.close()

    def _make_driver(self) -> BatchDriver:
        return BatchDriver(
            self.harvester,
            compute_timeout=self.cfg.COMPUTE_TIMEOUT_S,
            emit_graphs=self.cfg.PRINT_GRAPH,
            print_results=self.cfg.PRINT,
        )

    def _run_pair(self, device: DeviceContext, entry, groups, batch_index: int, offset: int) -> DriverRun:
        with self.acquire_batch(device, entry.config) as batch:
            return self._make_driver().run(
                batch, entry.group_ids, groups, batch_index=batch_index, offset=offset
            )

    def _run_parallel(self, devices: List[DeviceContext], plan: Plan, groups, offsets: List[int]) -> List[DriverRun]:
        free_devices: "queue.Queue[DeviceContext]" = queue.Queue()
        for device in devices:
            free_devices.put(device)

        abort = threading.Event()

        def task(b: int) -> Optional[DriverRun]:
            if abort.is_set():
                return None
            device = free_devices.get()
            try:
                return self._run_pair(device, plan[b], groups, b, offsets[b])
            except ResourceAcquisitionError:
                # pairs not yet started are not attempted
                abort.set()
                raise
            finally:
                free_devices.put(device)

        with ThreadPoolExecutor(max_workers=len(devices), thread_name_prefix="poa-device") as pool:
            futures = [pool.submit(task, b) for b in range(len(plan))]
            # result() re-raises a fatal error from any pair
            runs = [f.result() for f in futures]

        return sorted(runs, key=lambda r: r.batch_index)
