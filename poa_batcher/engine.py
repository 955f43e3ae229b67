"""
Compute-batch engine interface and a CPU reference implementation.

The scheduler only talks to the engine through ComputeBatch:
- add_group: offer one group; returns group status + per-read status
- run_compute: blocking alignment of every buffered group
- get_consensus / get_msa / get_graphs: per-group results after compute
- reset: drop all buffered groups, batch becomes as good as new
- accepted_count: number of groups currently buffered

SimulatedPoaBatch stands in for the GPU engine. It enforces the same
capacity rules (group slots, memory budget, read size) and produces a
column-profile consensus, so runs are reproducible without a device.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence as SequenceT, Tuple

import numpy as np

from .config import GB, CapacityConfig, RunConfig, ScoringParams, estimate_group_footprint
from .workload import Sequence


class StatusType(Enum):
    """Outcome of adding a group (or one read of a group) to a batch."""
    SUCCESS = "success"
    EXCEEDED_MAXIMUM_POAS = "exceeded_maximum_poas"
    EXCEEDED_MAXIMUM_SEQUENCE_SIZE = "exceeded_maximum_sequence_size"
    OTHER_ADD_FAILURE = "other_add_failure"

    def __str__(self) -> str:
        return self.value


class ResourceAcquisitionError(RuntimeError):
    """No device or batch could be created. Fatal for a run."""


class BatchError(RuntimeError):
    """The engine could not produce output for a whole batch."""


@dataclass(frozen=True)
class AddResult:
    """Result of one add attempt: group status plus one status per read."""
    status: StatusType
    sequence_status: Tuple[StatusType, ...] = ()
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.status is StatusType.SUCCESS

    @property
    def dropped_sequences(self) -> List[int]:
        """Indices of reads excluded for exceeding the maximum read size."""
        return [
            k for k, s in enumerate(self.sequence_status)
            if s is StatusType.EXCEEDED_MAXIMUM_SEQUENCE_SIZE
        ]


@dataclass
class DeviceContext:
    """A compute device and the memory it reports as free."""
    device_id: int
    total_memory: int
    free_memory: int


def open_devices(cfg: RunConfig) -> List[DeviceContext]:
    """
    Enumerate the devices available to a run.

    Raises:
        ResourceAcquisitionError: No device, or a device with no free memory
    """
    if cfg.NUM_DEVICES < 1:
        raise ResourceAcquisitionError("No compute device available (NUM_DEVICES=0)")

    free = int(cfg.DEVICE_MEMORY_GB * GB)
    if free <= 0:
        raise ResourceAcquisitionError(
            f"Device reports no free memory (DEVICE_MEMORY_GB={cfg.DEVICE_MEMORY_GB})"
        )

    return [DeviceContext(device_id=i, total_memory=free, free_memory=free) for i in range(cfg.NUM_DEVICES)]


class DirectedGraph:
    """Alignment graph of one group; nodes carry a base label, edges a read count."""

    def __init__(self):
        self.labels: List[str] = []
        self.edges: Dict[Tuple[int, int], int] = {}

    def add_node(self, label: str) -> int:
        self.labels.append(label)
        return len(self.labels) - 1

    def add_edge(self, src: int, dst: int) -> None:
        self.edges[(src, dst)] = self.edges.get((src, dst), 0) + 1

    @property
    def num_nodes(self) -> int:
        return len(self.labels)

    def serialize_to_dot(self) -> str:
        lines = ["digraph g {"]
        for node_id, label in enumerate(self.labels):
            lines.append(f'  {node_id} [label="{label}"];')
        for (src, dst), weight in sorted(self.edges.items()):
            lines.append(f'  {src} -> {dst} [label="{weight}"];')
        lines.append("}")
        return "\n".join(lines)


class ComputeBatch(ABC):
    """Interface of a fixed-capacity compute batch."""

    capacity: CapacityConfig

    @abstractmethod
    def add_group(self, group: SequenceT[Sequence]) -> AddResult:
        ...

    @abstractmethod
    def run_compute(self) -> None:
        ...

    @abstractmethod
    def get_consensus(self) -> Tuple[List[Optional[str]], List[Optional[np.ndarray]], List[StatusType]]:
        ...

    @abstractmethod
    def get_msa(self) -> Tuple[List[Optional[List[str]]], List[StatusType]]:
        ...

    @abstractmethod
    def get_graphs(self) -> Tuple[List[DirectedGraph], List[StatusType]]:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...

    @property
    @abstractmethod
    def accepted_count(self) -> int:
        ...

    def close(self) -> None:
        self.reset()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


@dataclass
class _GroupOutput:
    status: StatusType
    consensus: Optional[str] = None
    coverage: Optional[np.ndarray] = None
    alignment: Optional[List[str]] = None


class SimulatedPoaBatch(ComputeBatch):
    """
    CPU reference engine with the capacity rules of a device batch.

    Add rules:
    1. Each read longer than max_sequence_size is dropped
       (EXCEEDED_MAXIMUM_SEQUENCE_SIZE in the per-read status list)
    2. Empty group, too many reads, or too many bases -> OTHER_ADD_FAILURE
    3. No read left after dropping, all group slots used, or group
       footprint past the memory budget -> EXCEEDED_MAXIMUM_POAS (batch full)

    Accepted reads are copied; nothing of the caller's group is retained.
    """

    def __init__(
        self,
        device: DeviceContext,
        memory_budget: int,
        msa: bool,
        capacity: CapacityConfig,
        scoring: ScoringParams = ScoringParams(),
    ):
        self.device = device
        self.memory_budget = min(int(memory_budget), capacity.memory_budget)
        self.msa = msa
        self.capacity = capacity
        self.scoring = scoring

        self._lock = threading.Lock()
        self._generation = 0
        self._groups: List[List[Tuple[bytes, Optional[np.ndarray]]]] = []
        self._used_bytes = 0
        self._outputs: Optional[List[_GroupOutput]] = None
        self._closed = False

    # --- state -----------------------------------------------------------

    @property
    def accepted_count(self) -> int:
        return len(self._groups)

    @property
    def used_bytes(self) -> int:
        return self._used_bytes

    @property
    def computed(self) -> bool:
        return self._outputs is not None

    def reset(self) -> None:
        with self._lock:
            self._groups = []
            self._used_bytes = 0
            self._outputs = None
            self._generation += 1

    def close(self) -> None:
        self.reset()
        self._closed = True

    # --- add -------------------------------------------------------------

    def add_group(self, group: SequenceT[Sequence]) -> AddResult:
        if self._closed:
            raise BatchError("batch is closed")

        cap = self.capacity
        seq_status = tuple(
            StatusType.SUCCESS if len(s) <= cap.max_sequence_size
            else StatusType.EXCEEDED_MAXIMUM_SEQUENCE_SIZE
            for s in group
        )
        kept = [s for s, st in zip(group, seq_status) if st is StatusType.SUCCESS]

        if not group:
            return AddResult(StatusType.OTHER_ADD_FAILURE, seq_status, "empty group")
        if len(group) > cap.max_sequences_per_group:
            return AddResult(
                StatusType.OTHER_ADD_FAILURE, seq_status,
                f"{len(group)} reads > max {cap.max_sequences_per_group}",
            )
        if not kept:
            # no configuration of this batch can hold the group
            return AddResult(StatusType.EXCEEDED_MAXIMUM_POAS, seq_status, "no read within maximum size")

        total_bases = sum(len(s) for s in kept)
        if total_bases > cap.max_total_bases:
            return AddResult(
                StatusType.OTHER_ADD_FAILURE, seq_status,
                f"{total_bases} bases > max {cap.max_total_bases}",
            )

        footprint = estimate_group_footprint(
            max(len(s) for s in kept), len(kept),
            banded=cap.banded, msa=self.msa, band_width=cap.band_width,
        )

        with self._lock:
            if len(self._groups) >= cap.max_groups_per_batch:
                return AddResult(StatusType.EXCEEDED_MAXIMUM_POAS, seq_status, "all group slots used")
            if self._used_bytes + footprint > self.memory_budget:
                return AddResult(
                    StatusType.EXCEEDED_MAXIMUM_POAS, seq_status,
                    f"footprint {footprint} B does not fit in {self.memory_budget - self._used_bytes} B",
                )

            self._groups.append([
                (bytes(s.data), None if s.weights is None else s.weights.copy())
                for s in kept
            ])
            self._used_bytes += footprint
            self._outputs = None

        return AddResult(StatusType.SUCCESS, seq_status)

    # --- compute ---------------------------------------------------------

    def run_compute(self) -> None:
        with self._lock:
            generation = self._generation
            groups = list(self._groups)

        outputs = [self._align_group(reads) for reads in groups]

        with self._lock:
            # a reset during compute discards these results
            if generation == self._generation:
                self._outputs = outputs

    def _align_group(self, reads: List[Tuple[bytes, Optional[np.ndarray]]]) -> _GroupOutput:
        mat, weights = _profile_matrix(reads)
        n, length = mat.shape

        rows = [data.decode("ascii", errors="replace").ljust(length, "-") for data, _ in reads]

        if length == 0:
            return _GroupOutput(StatusType.SUCCESS, "", np.zeros(0, dtype=np.uint16), rows)

        present = mat != 0
        coverage = present.sum(axis=0)
        symbols = np.unique(mat[present])
        scores = np.stack([((mat == s) * weights).sum(axis=0) for s in symbols])
        best = symbols[scores.argmax(axis=0)]

        keep = coverage * 2 >= n
        consensus = best[keep].tobytes().decode("ascii", errors="replace")

        if len(consensus) > self.capacity.max_consensus_size:
            return _GroupOutput(StatusType.EXCEEDED_MAXIMUM_SEQUENCE_SIZE, alignment=rows)

        return _GroupOutput(
            StatusType.SUCCESS,
            consensus=consensus,
            coverage=coverage[keep].astype(np.uint16),
            alignment=rows,
        )

    # --- results ---------------------------------------------------------

    def _require_outputs(self) -> List[_GroupOutput]:
        outputs = self._outputs
        if outputs is None:
            raise BatchError("no results available: compute has not completed for this batch")
        return outputs

    def get_consensus(self):
        outputs = self._require_outputs()
        return (
            [o.consensus for o in outputs],
            [o.coverage for o in outputs],
            [o.status for o in outputs],
        )

    def get_msa(self):
        outputs = self._require_outputs()
        return [o.alignment for o in outputs], [o.status for o in outputs]

    def get_graphs(self):
        outputs = self._require_outputs()
        with self._lock:
            groups = list(self._groups)
        return [_build_graph(reads) for reads in groups], [o.status for o in outputs]


def _profile_matrix(reads: List[Tuple[bytes, Optional[np.ndarray]]]) -> Tuple[np.ndarray, np.ndarray]:
    length = max((len(data) for data, _ in reads), default=0)
    mat = np.zeros((len(reads), length), dtype=np.uint8)
    weights = np.zeros((len(reads), length), dtype=np.float64)
    for k, (data, w) in enumerate(reads):
        mat[k, :len(data)] = np.frombuffer(data, dtype=np.uint8)
        weights[k, :len(data)] = 1.0 if w is None else w
    return mat, weights


def _build_graph(reads: List[Tuple[bytes, Optional[np.ndarray]]]) -> DirectedGraph:
    graph = DirectedGraph()
    node_ids: Dict[Tuple[int, int], int] = {}
    for data, _ in reads:
        prev = None
        for col, base in enumerate(data):
            key = (col, base)
            if key not in node_ids:
                node_ids[key] = graph.add_node(chr(base))
            node = node_ids[key]
            if prev is not None:
                graph.add_edge(prev, node)
            prev = node
    return graph


def create_batch(device: DeviceContext, cfg: RunConfig, capacity: CapacityConfig) -> ComputeBatch:
    """
    Create a compute batch on a device for one sizing class.

    Raises:
        ResourceAcquisitionError: Device has no memory left for a batch
    """
    budget = cfg.memory_budget(device.free_memory)
    if budget <= 0:
        raise ResourceAcquisitionError(
            f"Device {device.device_id} has no memory for a batch ({device.free_memory} B free)"
        )

    return SimulatedPoaBatch(
        device=device,
        memory_budget=budget,
        msa=capacity.msa,
        capacity=capacity,
        scoring=cfg.scoring,
    )
