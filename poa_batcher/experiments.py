"""
Experiment runners: compare alignment / output modes on one workload.
"""

import os
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from .config import RunConfig
from .coordinator import RunCoordinator
from .metrics import compute_run_metrics
from .workload import Group, generate_workload


MODES: List[Tuple[str, Dict]] = [
    ("banded consensus", {"BANDED": True, "MSA": False}),
    ("full consensus", {"BANDED": False, "MSA": False}),
    ("banded msa", {"BANDED": True, "MSA": True}),
    ("full msa", {"BANDED": False, "MSA": True}),
]


def run_experiment(cfg: RunConfig, groups: Optional[List[Group]] = None) -> Dict:
    """
    Run a single configuration end to end.

    Args:
        cfg: Run configuration
        groups: Workload (generated from cfg when None)

    Returns:
        Dictionary containing metrics, configuration flags and the run result
    """
    if groups is None:
        groups = generate_workload(cfg)

    run = RunCoordinator(cfg).run(groups)
    metrics = compute_run_metrics(run)

    return {
        'banded': cfg.BANDED,
        'msa': cfg.MSA,
        'num_devices': cfg.NUM_DEVICES,
        'metrics': metrics,
        'run': run,
    }


def compare_modes(cfg: RunConfig, groups: Optional[List[Group]] = None) -> pd.DataFrame:
    """
    Run the same workload under every alignment / output mode.

    Args:
        cfg: Base configuration; BANDED and MSA are overridden per mode
        groups: Workload (generated once from cfg when None)

    Returns:
        DataFrame with one row per mode
    """
    if groups is None:
        groups = generate_workload(cfg)

    rows = []
    for name, overrides in MODES:
        print(f"\nRunning mode: {name}")
        mode_cfg = replace(cfg, **overrides)
        m = run_experiment(mode_cfg, groups)['metrics']
        rows.append({
            'Mode': name,
            'Configurations': m['num_batches'],
            'Flushes': m['num_flushes'],
            'Avg Flush Size': m['avg_flush_size'],
            'Max Flush Size': m['max_flush_size'],
            'Processed': m['num_processed'],
            'Failed': m['num_failed'],
            'Skipped': m['num_skipped'],
            'Success Rate (%)': m['success_rate'] * 100,
        })

    return pd.DataFrame(rows)


def plot_comparison(df: pd.DataFrame, output_dir: str = "plots") -> str:
    """
    Create comparison plots from compare_modes results.

    Args:
        df: DataFrame from compare_modes
        output_dir: Directory to save plots

    Returns:
        Path of the saved PNG
    """
    os.makedirs(output_dir, exist_ok=True)

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    fig.suptitle('Batching by Alignment Mode', fontsize=14, fontweight='bold')

    modes = df['Mode'].tolist()
    x_pos = range(len(modes))

    ax = axes[0]
    ax.bar(x_pos, df['Flushes'], color='steelblue', alpha=0.8)
    ax.set_ylabel('Flushes')
    ax.set_title('Compute Flushes per Run')
    ax.set_xticks(list(x_pos))
    ax.set_xticklabels(modes, rotation=15, ha='right')
    ax.grid(axis='y', alpha=0.3)

    ax = axes[1]
    ax.bar(x_pos, df['Avg Flush Size'], color='mediumseagreen', alpha=0.8)
    ax.set_ylabel('Groups per flush')
    ax.set_title('Average Flush Size')
    ax.set_xticks(list(x_pos))
    ax.set_xticklabels(modes, rotation=15, ha='right')
    ax.grid(axis='y', alpha=0.3)

    plt.tight_layout()

    plot_path = os.path.join(output_dir, 'mode_comparison.png')
    plt.savefig(plot_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"Saved plot to {plot_path}")

    return plot_path
