#!/usr/bin/env python3
"""
Run consensus or MSA generation over a windowed read workload.

Groups are planned into capacity classes, then each class is driven through
one compute batch: fill until the batch is full, compute, harvest, reset,
and retry the group that did not fit.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from poa_batcher.config import RunConfig
from poa_batcher.coordinator import RunCoordinator
from poa_batcher.engine import ResourceAcquisitionError
from poa_batcher.metrics import compute_run_metrics, print_metrics_table
from poa_batcher.workload import generate_workload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Batched POA sample: runs consensus or MSA generation on windowed reads."
    )

    parser.add_argument(
        '-m', '--msa',
        action='store_true',
        help='Generate MSA (if not provided, generates consensus by default)'
    )

    parser.add_argument(
        '-l', '--long-read',
        action='store_true',
        help='Perform long-read sample (if not provided, runs short-read sample by default)'
    )

    parser.add_argument(
        '-f', '--full-alignment',
        action='store_true',
        help='Perform full alignment (if not provided, banded alignment is used by default)'
    )

    parser.add_argument(
        '-p', '--print',
        dest='print_output',
        action='store_true',
        help='Print the MSA or consensus output to stdout'
    )

    parser.add_argument(
        '-g', '--print-graph',
        action='store_true',
        help='Print POA graph in dot format'
    )

    parser.add_argument(
        '-i', '--input',
        type=str,
        default=None,
        help='Window data file (.txt count-prefixed windows, or .csv with window/sequence columns). '
             'Default: synthetic workload'
    )

    parser.add_argument(
        '--num-windows',
        type=int,
        default=None,
        help='Windows to load for the short-read sample (default: 1000, -1 = all)'
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=600.0,
        help='Seconds to wait for one batch compute before failing it (default: 600)'
    )

    parser.add_argument(
        '--num-devices',
        type=int,
        default=1,
        help='Number of independent devices; >1 runs batch configurations concurrently (default: 1)'
    )

    parser.add_argument(
        '--device-memory-gb',
        type=float,
        default=8.0,
        help='Free memory per device in GB (default: 8.0)'
    )

    parser.add_argument(
        '--seed',
        type=int,
        default=42,
        help='Random seed for the synthetic workload (default: 42)'
    )

    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    cfg = RunConfig(
        MSA=args.msa,
        BANDED=not args.full_alignment,
        LONG_READ=args.long_read,
        PRINT=args.print_output,
        PRINT_GRAPH=args.print_graph,
        DATASET_PATH=args.input,
        COMPUTE_TIMEOUT_S=args.timeout if args.timeout > 0 else None,
        NUM_DEVICES=args.num_devices,
        DEVICE_MEMORY_GB=args.device_memory_gb,
        SEED=args.seed,
    )
    if args.num_windows is not None:
        cfg.NUM_WINDOWS = args.num_windows
    return cfg


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = config_from_args(args)
        groups = generate_workload(cfg)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        run = RunCoordinator(cfg).run(groups)
    except ResourceAcquisitionError as e:
        print(f"Fatal: {e}", file=sys.stderr)
        return 1

    metrics = compute_run_metrics(run)
    mode = "msa" if cfg.MSA else "consensus"
    align = "banded" if cfg.BANDED else "full"
    print_metrics_table(metrics, label=f"{align} {mode}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
