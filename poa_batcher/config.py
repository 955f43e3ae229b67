"""
Configuration for batched partial-order alignment runs.

Two levels of configuration:
- RunConfig: run-wide knobs (output mode, scoring, device budget, planner
  size classes, printing, workload selection)
- CapacityConfig: one sizing class for a compute batch, produced by the
  planner and consumed unchanged by the engine
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


GB = 1024 ** 3


@dataclass
class RunConfig:
    """
    Configuration for one batched POA run.

    Defaults follow the sample program: consensus output, banded alignment,
    90% of free device memory per batch, short-read sample capped at 1000
    windows.
    """

    # ===== Output / Alignment Mode =====
    MSA: bool = False              # Multi-alignment output instead of consensus
    BANDED: bool = True            # Banded alignment (False = full alignment)
    BAND_WIDTH: int = 256          # Band width used when BANDED

    # ===== Scoring (passed through to the engine) =====
    MATCH_SCORE: int = 8
    MISMATCH_SCORE: int = -6
    GAP_SCORE: int = -8

    # ===== Device =====
    NUM_DEVICES: int = 1           # Independent device contexts (1 = strictly sequential)
    DEVICE_MEMORY_GB: float = 8.0  # Free memory reported per device
    MEM_FRACTION: float = 0.9      # Share of free memory given to one batch

    # ===== Planner =====
    # Max-sequence-size classes; a group lands in the smallest class holding its longest read
    SIZE_CLASSES: Tuple[int, ...] = (256, 512, 1024, 2048, 4096, 8192, 16384, 32768)
    MAX_GROUPS_PER_BATCH: int = 4096

    # ===== Driver =====
    COMPUTE_TIMEOUT_S: Optional[float] = 600.0  # None = wait forever on compute

    # ===== Output =====
    PRINT: bool = False            # Print consensus / MSA rows
    PRINT_GRAPH: bool = False      # Print per-group graphs in DOT format

    # ===== Workload =====
    LONG_READ: bool = False
    NUM_WINDOWS: int = 1000        # -1 = all windows
    DATASET_PATH: Optional[str] = None
    SEED: int = 42

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.NUM_DEVICES < 0:
            raise ValueError("NUM_DEVICES must be >= 0")

        if not 0.0 < self.MEM_FRACTION <= 1.0:
            raise ValueError(f"MEM_FRACTION must be in (0, 1], got {self.MEM_FRACTION}")

        if self.BAND_WIDTH < 1:
            raise ValueError("BAND_WIDTH must be >= 1")

        if self.MAX_GROUPS_PER_BATCH < 1:
            raise ValueError("MAX_GROUPS_PER_BATCH must be >= 1")

        if not self.SIZE_CLASSES:
            raise ValueError("SIZE_CLASSES must not be empty")
        self.SIZE_CLASSES = tuple(sorted(int(c) for c in self.SIZE_CLASSES))
        if self.SIZE_CLASSES[0] < 1:
            raise ValueError("SIZE_CLASSES entries must be >= 1")

        if self.COMPUTE_TIMEOUT_S is not None and self.COMPUTE_TIMEOUT_S <= 0:
            raise ValueError("COMPUTE_TIMEOUT_S must be positive or None")

    @property
    def scoring(self) -> "ScoringParams":
        return ScoringParams(
            match=self.MATCH_SCORE,
            mismatch=self.MISMATCH_SCORE,
            gap=self.GAP_SCORE,
        )

    def memory_budget(self, free_memory_bytes: int) -> int:
        """Bytes one batch may use on a device with the given free memory."""
        return int(free_memory_bytes * self.MEM_FRACTION)


@dataclass(frozen=True)
class ScoringParams:
    """Scoring model handed opaquely to the engine."""
    match: int = 8
    mismatch: int = -6
    gap: int = -8


@dataclass(frozen=True)
class CapacityConfig:
    """
    Resource budget of one compute batch.

    The scheduler treats this as an opaque sizing class: it never changes a
    configuration, it only fills batches built from it.
    """
    max_sequence_size: int
    max_sequences_per_group: int
    max_total_bases: int
    max_groups_per_batch: int
    memory_budget: int
    max_consensus_size: Optional[int] = None
    banded: bool = True
    msa: bool = False
    band_width: int = 256
    label: str = field(default="", compare=False)

    def __post_init__(self):
        if self.max_sequence_size < 1:
            raise ValueError("max_sequence_size must be >= 1")
        if self.max_sequences_per_group < 1:
            raise ValueError("max_sequences_per_group must be >= 1")
        if self.max_groups_per_batch < 1:
            raise ValueError("max_groups_per_batch must be >= 1")
        if self.memory_budget < 0:
            raise ValueError("memory_budget must be >= 0")
        if self.max_consensus_size is None:
            # Consensus may grow past the longest read by insertions
            object.__setattr__(self, "max_consensus_size", 2 * self.max_sequence_size)

    def describe(self) -> str:
        mode = "msa" if self.msa else "consensus"
        align = f"banded({self.band_width})" if self.banded else "full"
        return (
            f"max_seq={self.max_sequence_size} max_reads={self.max_sequences_per_group} "
            f"max_groups={self.max_groups_per_batch} {align} {mode}"
        )


def estimate_group_footprint(
    max_sequence_size: int,
    num_sequences: int,
    banded: bool = True,
    msa: bool = False,
    band_width: int = 256,
) -> int:
    """
    Estimate device bytes needed by one POA group.

    Memory model (per group):
        nodes       = 3 × L   (4 × L for MSA, which keeps column links)
        score DP    = 2 bytes × nodes × D,  D = band_width + 16 (banded) or L + 1 (full)
        graph       = 48 bytes × nodes      (bases, edges, weights, coverage)
        reads       = 2 bytes × N × L       (bases + weights)
        msa rows    = N × nodes             (MSA only)

    Args:
        max_sequence_size: Longest read the group may contain (L)
        num_sequences: Number of reads in the group (N)
        banded: Banded vs full alignment
        msa: Whether MSA output is requested
        band_width: Band width for banded alignment

    Returns:
        Estimated footprint in bytes
    """
    L = max(1, int(max_sequence_size))
    N = max(1, int(num_sequences))

    nodes = (4 if msa else 3) * L
    matrix_seq_dim = band_width + 16 if banded else L + 1

    score_bytes = 2 * nodes * matrix_seq_dim
    graph_bytes = 48 * nodes
    read_bytes = 2 * N * L
    msa_bytes = N * nodes if msa else 0

    return score_bytes + graph_bytes + read_bytes + msa_bytes


def default_config() -> RunConfig:
    """Return a default configuration."""
    return RunConfig()
