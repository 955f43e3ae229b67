"""
Workload loading and generation for batched POA runs.

A workload is a list of groups (windows); each group is a list of reads that
are aligned together. Group identity is its index in the list.
"""

import os
from dataclasses import dataclass
from typing import List, Optional, Sequence as SequenceT, Union

import numpy as np

from .config import RunConfig


BASES = np.frombuffer(b"ACGT", dtype=np.uint8)


@dataclass(frozen=True, eq=False)
class Sequence:
    """One read of a group, with optional per-base weights."""
    data: bytes
    weights: Optional[np.ndarray] = None

    def __post_init__(self):
        if isinstance(self.data, str):
            object.__setattr__(self, "data", self.data.encode("ascii"))
        if self.weights is not None:
            raw = np.asarray(self.weights, dtype=np.float64)
            if raw.shape != (len(self.data),):
                raise ValueError(
                    f"weights length {raw.shape} does not match sequence length {len(self.data)}"
                )
            if np.any((raw < 0) | (raw > 255)):
                raise ValueError(f"weights must be between 0 and 255, got {raw.min()}..{raw.max()}")
            if np.any(raw != np.round(raw)):
                raise ValueError("weights must be whole numbers")
            weights = raw.astype(np.uint8)
            weights.flags.writeable = False
            object.__setattr__(self, "weights", weights)

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        preview = self.data[:12].decode("ascii", errors="replace")
        suffix = "..." if len(self.data) > 12 else ""
        return f"Sequence({preview}{suffix}, len={len(self.data)})"


Group = List[Sequence]


def make_groups(windows: List[List[Union[str, bytes]]]) -> List[Group]:
    """Wrap raw read strings into groups of unweighted sequences."""
    return [[Sequence(read) for read in window] for window in windows]


def group_total_bases(group: SequenceT[Sequence]) -> int:
    return sum(len(s) for s in group)


def group_max_length(group: SequenceT[Sequence]) -> int:
    return max((len(s) for s in group), default=0)


def parse_window_data_file(path: str, max_windows: int = -1) -> List[List[str]]:
    """
    Parse a window data file.

    Format: a line holding the number of reads N, followed by N read lines,
    repeated for each window. Blank lines are ignored.

    Args:
        path: Path to the text file
        max_windows: Stop after this many windows (-1 = all)

    Returns:
        List of windows, each a list of read strings
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Window data file not found: {path}")

    with open(path) as fh:
        lines = [line.strip() for line in fh if line.strip()]

    windows = []
    pos = 0
    while pos < len(lines):
        if max_windows >= 0 and len(windows) >= max_windows:
            break
        try:
            num_reads = int(lines[pos])
        except ValueError:
            raise ValueError(f"{path}: expected read count at line {pos + 1}, got {lines[pos]!r}")
        reads = lines[pos + 1: pos + 1 + num_reads]
        if len(reads) != num_reads:
            raise ValueError(
                f"{path}: window {len(windows)} declares {num_reads} reads, found {len(reads)}"
            )
        windows.append(reads)
        pos += 1 + num_reads

    return windows


def load_window_csv(path: str, max_windows: int = -1) -> List[List[str]]:
    """
    Load windows from a CSV file with `window` and `sequence` columns.

    Rows are grouped by window id in order of first appearance; read order
    within a window follows row order.
    """
    import pandas as pd

    if not os.path.exists(path):
        raise FileNotFoundError(f"Window CSV not found: {path}")

    df = pd.read_csv(path)

    window_col = None
    seq_col = None
    for col in df.columns:
        col_lower = col.lower()
        if 'window' in col_lower or 'group' in col_lower:
            window_col = col
        elif 'seq' in col_lower or 'read' in col_lower:
            seq_col = col

    if window_col is None or seq_col is None:
        raise ValueError(f"CSV must have window/group and sequence/read columns. Found: {df.columns.tolist()}")

    windows = []
    for _, rows in df.groupby(window_col, sort=False):
        if max_windows >= 0 and len(windows) >= max_windows:
            break
        windows.append([str(s) for s in rows[seq_col].tolist()])

    return windows


def generate_windows(
    num_windows: int,
    seed: int = 42,
    long_read: bool = False,
    reads_per_window: int = 30,
    error_rate: float = 0.08,
) -> List[List[str]]:
    """
    Generate synthetic windows: noisy copies of one random template per window.

    Short-read windows use ~250 bp templates; long-read windows use 1-12 kbp
    templates and fewer reads.

    Args:
        num_windows: Number of windows to generate
        seed: Random seed
        long_read: Long-read vs short-read shapes
        reads_per_window: Mean number of reads per window
        error_rate: Per-base substitution/indel probability

    Returns:
        List of windows, each a list of read strings
    """
    rng = np.random.default_rng(seed)
    windows = []

    for _ in range(num_windows):
        if long_read:
            template_len = int(rng.integers(1000, 12000))
            n_reads = max(2, int(rng.poisson(max(2, reads_per_window // 3))))
        else:
            template_len = int(rng.normal(250, 40))
            n_reads = max(2, int(rng.poisson(reads_per_window)))
        template_len = max(16, template_len)

        template = BASES[rng.integers(0, 4, size=template_len)]
        windows.append([_mutate(template, rng, error_rate) for _ in range(n_reads)])

    return windows


def _mutate(template: np.ndarray, rng: np.random.Generator, error_rate: float) -> str:
    # one third each: substitution, deletion, insertion
    draws = rng.random(len(template))
    kinds = rng.integers(0, 3, size=len(template))
    out = template.copy()

    subs = (draws < error_rate) & (kinds == 0)
    out[subs] = BASES[rng.integers(0, 4, size=int(subs.sum()))]

    keep = ~((draws < error_rate) & (kinds == 1))
    ins = (draws < error_rate) & (kinds == 2)
    repeats = np.where(ins, 2, 1)[keep]
    out = np.repeat(out[keep], repeats)

    return out.tobytes().decode("ascii")


def generate_workload(cfg: RunConfig) -> List[Group]:
    """
    Build the groups for a run.

    Uses cfg.DATASET_PATH when set (`.csv` through pandas, anything else as a
    window data file), otherwise the seeded synthetic generator.

    Args:
        cfg: Run configuration

    Returns:
        List of groups
    """
    max_windows = -1 if cfg.LONG_READ else cfg.NUM_WINDOWS

    if cfg.DATASET_PATH:
        if cfg.DATASET_PATH.lower().endswith(".csv"):
            windows = load_window_csv(cfg.DATASET_PATH, max_windows)
        else:
            windows = parse_window_data_file(cfg.DATASET_PATH, max_windows)
        print(f"Loaded {len(windows)} windows from: {cfg.DATASET_PATH}")
    else:
        num_windows = cfg.NUM_WINDOWS if cfg.NUM_WINDOWS >= 0 else 1000
        if cfg.LONG_READ:
            num_windows = min(num_windows, 64)
        windows = generate_windows(num_windows, seed=cfg.SEED, long_read=cfg.LONG_READ)
        print(f"Generated {len(windows)} synthetic {'long' if cfg.LONG_READ else 'short'}-read windows")

    return make_groups(windows)
