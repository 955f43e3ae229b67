"""
Tests for run metrics, the summary table and mode comparison experiments.
"""

import os

import pytest

from poa_batcher.config import RunConfig
from poa_batcher.coordinator import RunCoordinator
from poa_batcher.experiments import MODES, compare_modes, plot_comparison, run_experiment
from poa_batcher.metrics import compute_run_metrics, print_metrics_table
from poa_batcher.workload import make_groups


def workload():
    return make_groups(
        [["ACGT" * 10] * 3 for _ in range(5)]
        + [[]]
        + [["ACGT" * 10, "A" * 600]]
    )


def small_cfg(**overrides):
    params = dict(MAX_GROUPS_PER_BATCH=2, COMPUTE_TIMEOUT_S=None, SIZE_CLASSES=(256,))
    params.update(overrides)
    return RunConfig(**params)


def test_compute_run_metrics():
    run = RunCoordinator(small_cfg()).run(workload())
    metrics = compute_run_metrics(run)

    print(f"Metrics: {metrics}")

    assert metrics['num_groups'] == 7
    assert metrics['num_reported'] == 7
    assert metrics['num_processed'] == 6
    assert metrics['num_failed'] == 1
    assert metrics['num_skipped'] == 0
    assert metrics['num_dropped_sequences'] == 1
    assert metrics['num_batches'] == 1
    assert metrics['num_flushes'] == 3
    assert metrics['max_flush_size'] == 2
    assert metrics['avg_flush_size'] == pytest.approx(2.0)
    assert metrics['success_rate'] == pytest.approx(6 / 7)


def test_metrics_for_empty_run():
    metrics = compute_run_metrics(RunCoordinator(small_cfg()).run([]))

    assert metrics['num_flushes'] == 0
    assert metrics['avg_flush_size'] == 0.0
    assert metrics['success_rate'] == 0.0


def test_print_metrics_table(capsys):
    metrics = compute_run_metrics(RunCoordinator(small_cfg()).run(workload()))
    baseline = dict(metrics, num_flushes=5)

    print_metrics_table(metrics, label="banded consensus", baseline=baseline)

    out = capsys.readouterr().out
    assert "Run: banded consensus" in out
    assert "Processed:           6" in out
    assert "Flush count delta:   -2" in out


def test_run_experiment():
    result = run_experiment(small_cfg(MSA=True), workload())

    assert result['msa'] is True
    assert result['banded'] is True
    assert result['metrics']['num_groups'] == 7
    assert len(result['run'].outcomes) == 7


def test_compare_modes():
    df = compare_modes(small_cfg(), workload())

    assert df['Mode'].tolist() == [name for name, _ in MODES]
    assert (df['Processed'] == 6).all()
    assert (df['Failed'] == 1).all()


def test_plot_comparison(tmp_path):
    df = compare_modes(small_cfg(), workload())

    path = plot_comparison(df, output_dir=str(tmp_path))

    assert os.path.exists(path)
    assert path.endswith("mode_comparison.png")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
