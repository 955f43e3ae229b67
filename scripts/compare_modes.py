#!/usr/bin/env python3
"""
Compare batching across banded/full alignment and consensus/MSA output.

Runs one workload under all four modes, prints a comparison table and
saves a bar chart.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from poa_batcher.config import RunConfig
from poa_batcher.experiments import compare_modes, plot_comparison
from poa_batcher.workload import generate_workload


def main():
    parser = argparse.ArgumentParser(
        description="Compare POA batching across alignment and output modes"
    )

    parser.add_argument(
        '--num-windows',
        type=int,
        default=200,
        help='Number of synthetic windows (default: 200)'
    )

    parser.add_argument(
        '--long-read',
        action='store_true',
        help='Use long-read windows'
    )

    parser.add_argument(
        '--device-memory-gb',
        type=float,
        default=0.5,
        help='Free device memory in GB; small values force several flushes (default: 0.5)'
    )

    parser.add_argument(
        '--input',
        type=str,
        default=None,
        help='Window data file instead of the synthetic workload'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        default='plots',
        help='Directory for plots and CSV (default: plots)'
    )

    args = parser.parse_args()

    cfg = RunConfig(
        NUM_WINDOWS=args.num_windows,
        LONG_READ=args.long_read,
        DEVICE_MEMORY_GB=args.device_memory_gb,
        DATASET_PATH=args.input,
    )

    groups = generate_workload(cfg)
    df = compare_modes(cfg, groups)

    print(f"\n{'='*80}")
    print("Mode Comparison")
    print(f"{'='*80}")
    print(df.to_string(index=False))

    Path(args.output_dir).mkdir(parents=True, exist_ok=True)
    csv_path = Path(args.output_dir) / "mode_comparison.csv"
    df.to_csv(csv_path, index=False)
    print(f"\nSaved table to {csv_path}")

    plot_comparison(df, args.output_dir)


if __name__ == "__main__":
    main()
