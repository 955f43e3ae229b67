"""
Tests for result harvesting: ordering, per-group failures, batch-level failures.
"""

import pytest

from poa_batcher.config import GB, CapacityConfig
from poa_batcher.engine import DeviceContext, SimulatedPoaBatch, StatusType
from poa_batcher.harvester import ResultHarvester
from poa_batcher.workload import make_groups


def computed_batch(windows, msa=False, **capacity_kwargs):
    capacity = CapacityConfig(
        max_sequence_size=64, max_sequences_per_group=8, max_total_bases=512,
        max_groups_per_batch=8, memory_budget=GB, msa=msa, **capacity_kwargs,
    )
    batch = SimulatedPoaBatch(DeviceContext(0, GB, GB), GB, msa=msa, capacity=capacity)
    for group in make_groups(windows):
        assert batch.add_group(group).accepted
    batch.run_compute()
    return batch


class ShortResultBatch(SimulatedPoaBatch):
    """Returns one consensus fewer than it holds groups."""

    def get_consensus(self):
        consensus, coverage, status = super().get_consensus()
        return consensus[:-1], coverage[:-1], status[:-1]


def test_mode_name():
    assert ResultHarvester(msa=False).mode_name == "consensus"
    assert ResultHarvester(msa=True).mode_name == "MSA"


def test_consensus_in_submission_order():
    batch = computed_batch([["AAAA"], ["CCCC", "CCCC"], ["GGGG"]])

    results, error = ResultHarvester().harvest(batch, "0.0")

    assert error is None
    assert [r.consensus for r in results] == ["AAAA", "CCCC", "GGGG"]
    assert all(r.ok for r in results)
    assert results[1].coverage.tolist() == [2, 2, 2, 2]


def test_msa_harvest():
    batch = computed_batch([["ACGT", "ACG"]], msa=True)

    results, error = ResultHarvester(msa=True).harvest(batch)

    assert error is None
    assert results[0].alignment == ["ACGT", "ACG-"]
    assert results[0].consensus is None


def test_failed_group_does_not_hide_others():
    batch = computed_batch([["ACGT"], ["ACGTACGT"], ["TTTT"]], max_consensus_size=4)

    results, error = ResultHarvester().harvest(batch)

    assert error is None
    assert [r.status for r in results] == [
        StatusType.SUCCESS, StatusType.EXCEEDED_MAXIMUM_SEQUENCE_SIZE, StatusType.SUCCESS,
    ]
    assert results[1].consensus is None
    assert "consensus generation failed" in results[1].error
    assert results[2].consensus == "TTTT"


def test_uncomputed_batch_fails_every_group():
    capacity = CapacityConfig(
        max_sequence_size=64, max_sequences_per_group=8, max_total_bases=512,
        max_groups_per_batch=8, memory_budget=GB,
    )
    batch = SimulatedPoaBatch(DeviceContext(0, GB, GB), GB, msa=False, capacity=capacity)
    for group in make_groups([["ACGT"], ["ACGT"]]):
        batch.add_group(group)

    with pytest.warns(UserWarning, match="Could not generate consensus for batch 3.1"):
        results, error = ResultHarvester().harvest(batch, "3.1")

    assert "compute has not completed" in error
    assert len(results) == 2
    assert all(r.status is StatusType.OTHER_ADD_FAILURE for r in results)
    assert all(r.error == error for r in results)


def test_result_count_mismatch_fails_batch():
    capacity = CapacityConfig(
        max_sequence_size=64, max_sequences_per_group=8, max_total_bases=512,
        max_groups_per_batch=8, memory_budget=GB,
    )
    batch = ShortResultBatch(DeviceContext(0, GB, GB), GB, msa=False, capacity=capacity)
    for group in make_groups([["ACGT"], ["ACGT"]]):
        batch.add_group(group)
    batch.run_compute()

    with pytest.warns(UserWarning, match="1 results for 2 groups"):
        results, error = ResultHarvester().harvest(batch)

    assert len(results) == 2
    assert not any(r.ok for r in results)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
