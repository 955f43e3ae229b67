"""
Run metrics and summary reporting.

Per-run counts follow the group dispositions reported by the driver:
- processed: harvested with SUCCESS
- failed: rejected at add time, or harvested with an error
- skipped: did not fit an empty batch of its configuration
"""

from typing import Dict, Optional

import numpy as np

from .coordinator import RunResult
from .driver import Disposition


def compute_run_metrics(run: RunResult) -> Dict:
    """
    Compute summary metrics for a finished run.

    Args:
        run: Result of RunCoordinator.run

    Returns:
        Dictionary of counts, flush-size statistics and success rate
    """
    outcomes = run.outcomes
    flush_sizes = [f.size for f in run.flushes]

    if flush_sizes:
        avg_flush = float(np.mean(flush_sizes))
        p50_flush = float(np.percentile(flush_sizes, 50))
        p95_flush = float(np.percentile(flush_sizes, 95))
        max_flush = int(np.max(flush_sizes))
    else:
        avg_flush = p50_flush = p95_flush = 0.0
        max_flush = 0

    processed = run.count(Disposition.PROCESSED)

    return {
        'num_groups': run.num_groups,
        'num_reported': len(outcomes),
        'num_processed': processed,
        'num_failed': run.count(Disposition.FAILED),
        'num_skipped': run.count(Disposition.SKIPPED),
        'num_dropped_sequences': sum(len(o.dropped_sequences) for o in outcomes),
        'num_batches': len(run.plan),
        'num_flushes': len(flush_sizes),
        'num_failed_flushes': sum(1 for f in run.flushes if f.error is not None),
        'avg_flush_size': avg_flush,
        'p50_flush_size': p50_flush,
        'p95_flush_size': p95_flush,
        'max_flush_size': max_flush,
        'success_rate': processed / run.num_groups if run.num_groups > 0 else 0.0,
    }


def print_metrics_table(metrics: Dict, label: str = "run", baseline: Optional[Dict] = None) -> None:
    """
    Print a formatted summary of run metrics.

    Args:
        metrics: Output of compute_run_metrics
        label: Name shown in the header
        baseline: Optional metrics to show flush-count differences against
    """
    print(f"\n{'='*60}")
    print(f"Run: {label}")
    print(f"{'='*60}")

    print(f"\n[Groups]")
    print(f"  Total:               {metrics['num_groups']}")
    print(f"  Processed:           {metrics['num_processed']}")
    print(f"  Failed:              {metrics['num_failed']}")
    print(f"  Skipped:             {metrics['num_skipped']}")
    print(f"  Dropped sequences:   {metrics['num_dropped_sequences']}")
    print(f"  Success rate:        {metrics['success_rate']*100:.2f}%")

    print(f"\n[Batches]")
    print(f"  Configurations:      {metrics['num_batches']}")
    print(f"  Flushes:             {metrics['num_flushes']}")
    print(f"  Failed flushes:      {metrics['num_failed_flushes']}")
    print(f"  Avg flush size:      {metrics['avg_flush_size']:.1f}")
    print(f"  P95 flush size:      {metrics['p95_flush_size']:.1f}")
    print(f"  Max flush size:      {metrics['max_flush_size']}")

    if baseline is not None:
        delta = metrics['num_flushes'] - baseline['num_flushes']
        print(f"\n[vs Baseline]")
        print(f"  Flush count delta:   {delta:+d}")

    print(f"{'='*60}")
