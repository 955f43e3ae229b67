"""
Capacity planning: split a workload into sizing classes.

Groups are classed by their longest read (smallest size class that holds
it). Each non-empty class becomes one (CapacityConfig, group ids) pair, so
the plan has as few pairs as the classing allows and the number of batches
inside a pair is ceil(n_k / max_groups_k).

Ordering:
- pairs follow the first input index that fell into each class
- ids inside a pair keep input order (FIFO within a class)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence as SequenceT, Tuple

from .config import GB, CapacityConfig, RunConfig, estimate_group_footprint
from .workload import Group, group_max_length, group_total_bases


@dataclass
class PlanEntry:
    """One sizing class and the groups assigned to it."""
    config: CapacityConfig
    group_ids: List[int]

    def __len__(self) -> int:
        return len(self.group_ids)


Plan = List[PlanEntry]


class CapacityPlanner:
    """
    Builds a Plan from a workload and the run's mode flags.

    Args:
        cfg: Run configuration (size classes, group ceiling, band width)
        memory_budget: Bytes available to one batch
    """

    def __init__(self, cfg: RunConfig, memory_budget: int):
        self.cfg = cfg
        self.memory_budget = int(memory_budget)

    def plan(
        self,
        groups: SequenceT[Group],
        banded: Optional[bool] = None,
        msa: Optional[bool] = None,
    ) -> Plan:
        """
        Assign every group to exactly one sizing class.

        Args:
            groups: Workload, group id = list index
            banded: Banded alignment (defaults to cfg.BANDED)
            msa: MSA output (defaults to cfg.MSA)

        Returns:
            Ordered list of PlanEntry; empty for an empty workload
        """
        banded = self.cfg.BANDED if banded is None else banded
        msa = self.cfg.MSA if msa is None else msa

        buckets: Dict[int, List[int]] = {}
        for group_id, group in enumerate(groups):
            size_class = self._select_class(group_max_length(group))
            buckets.setdefault(size_class, []).append(group_id)

        plan = []
        # dicts keep insertion order: first input index per class
        for size_class, group_ids in buckets.items():
            config = self._make_config(size_class, [groups[g] for g in group_ids], banded, msa)
            plan.append(PlanEntry(config=config, group_ids=group_ids))

        return plan

    def _select_class(self, longest_read: int) -> int:
        """
        Select the size class for a group's longest read.

        Returns:
            Smallest class >= longest_read, or the largest class when none holds it
        """
        for size_class in self.cfg.SIZE_CLASSES:
            if longest_read <= size_class:
                return size_class
        return self.cfg.SIZE_CLASSES[-1]

    def _make_config(self, size_class: int, members: List[Group], banded: bool, msa: bool) -> CapacityConfig:
        max_reads = max((len(g) for g in members), default=1)
        max_bases = max((group_total_bases(g) for g in members), default=size_class)

        max_groups = compute_max_groups(
            size_class, max_reads, self.memory_budget,
            banded=banded, msa=msa,
            band_width=self.cfg.BAND_WIDTH,
            ceiling=self.cfg.MAX_GROUPS_PER_BATCH,
        )

        return CapacityConfig(
            max_sequence_size=size_class,
            max_sequences_per_group=max(1, max_reads),
            max_total_bases=max(1, max_bases),
            max_groups_per_batch=max_groups,
            memory_budget=self.memory_budget,
            banded=banded,
            msa=msa,
            band_width=self.cfg.BAND_WIDTH,
            label=f"class<={size_class}",
        )


def compute_max_groups(
    max_sequence_size: int,
    max_sequences: int,
    memory_budget: int,
    banded: bool = True,
    msa: bool = False,
    band_width: int = 256,
    ceiling: int = 4096,
) -> int:
    """
    Compute how many worst-case groups of a class fit in one batch.

    Formula: max_groups = clamp(floor(memory_budget / footprint), 1, ceiling)

    A class whose single worst-case group already exceeds the budget still
    gets one slot; groups that truly do not fit are rejected at add time
    and skipped by the driver.
    """
    footprint = estimate_group_footprint(
        max_sequence_size, max_sequences, banded=banded, msa=msa, band_width=band_width
    )
    fit = memory_budget // footprint if footprint > 0 else ceiling
    return max(1, min(ceiling, int(fit)))


def estimate_configs(
    groups: SequenceT[Group],
    banded: bool,
    msa: bool,
    cfg: Optional[RunConfig] = None,
    memory_budget: Optional[int] = None,
) -> Plan:
    """
    Capacity estimation entry point: classes groups into a Plan.

    Args:
        groups: Workload
        banded: Banded alignment
        msa: MSA output
        cfg: Run configuration (defaults to RunConfig())
        memory_budget: Bytes per batch (defaults to cfg's device budget)
    """
    cfg = cfg or RunConfig()
    if memory_budget is None:
        memory_budget = cfg.memory_budget(int(cfg.DEVICE_MEMORY_GB * GB))
    return CapacityPlanner(cfg, memory_budget).plan(groups, banded=banded, msa=msa)


def validate_plan(plan: Plan, num_groups: int) -> None:
    """
    Check that a plan covers every group id exactly once.

    Raises:
        ValueError: Missing, duplicated or out-of-range group ids
    """
    seen: Dict[int, int] = {}
    duplicates: List[Tuple[int, int, int]] = []
    for b, entry in enumerate(plan):
        for group_id in entry.group_ids:
            if not 0 <= group_id < num_groups:
                raise ValueError(f"Plan pair {b} references unknown group {group_id}")
            if group_id in seen:
                duplicates.append((group_id, seen[group_id], b))
            seen[group_id] = b

    if duplicates:
        group_id, first, second = duplicates[0]
        raise ValueError(
            f"Group {group_id} assigned twice (pairs {first} and {second}); "
            f"{len(duplicates)} duplicate assignment(s) in total"
        )

    missing = [g for g in range(num_groups) if g not in seen]
    if missing:
        raise ValueError(f"Plan does not cover {len(missing)} group(s), first missing: {missing[:5]}")
