"""
Result harvesting after a batch has been computed.
"""

import warnings
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .engine import BatchError, ComputeBatch, StatusType


@dataclass
class GroupResult:
    """Output of one buffered group: consensus or MSA form, plus its status."""
    status: StatusType
    consensus: Optional[str] = None
    coverage: Optional[np.ndarray] = None
    alignment: Optional[List[str]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is StatusType.SUCCESS


class ResultHarvester:
    """
    Collects per-group results from a computed batch, in submission order.

    A failed group never hides the results of the other groups. When the
    engine cannot produce output for the batch at all, a warning is issued
    and every buffered group is returned as failed.
    """

    def __init__(self, msa: bool = False):
        self.msa = msa

    @property
    def mode_name(self) -> str:
        return "MSA" if self.msa else "consensus"

    def harvest(self, batch: ComputeBatch, batch_label: str = "") -> Tuple[List[GroupResult], Optional[str]]:
        """
        Harvest results for every group currently buffered in the batch.

        Args:
            batch: A batch on which compute has completed
            batch_label: Identifier used in warnings

        Returns:
            Tuple of (results, error)
            - results: one GroupResult per buffered group, submission order
            - error: batch-level failure message, or None
        """
        num_groups = batch.accepted_count

        try:
            if self.msa:
                results = self._harvest_msa(batch)
            else:
                results = self._harvest_consensus(batch)
        except BatchError as e:
            return self.fail_all(num_groups, str(e), batch_label), str(e)

        if len(results) != num_groups:
            error = f"engine returned {len(results)} results for {num_groups} groups"
            return self.fail_all(num_groups, error, batch_label), error

        return results, None

    def fail_all(self, num_groups: int, error: str, batch_label: str = "") -> List[GroupResult]:
        """Report every buffered group as failed after a batch-level failure."""
        warnings.warn(f"Could not generate {self.mode_name} for batch {batch_label} : {error}")
        return [GroupResult(status=StatusType.OTHER_ADD_FAILURE, error=error) for _ in range(num_groups)]

    def _harvest_consensus(self, batch: ComputeBatch) -> List[GroupResult]:
        consensus, coverage, status = batch.get_consensus()
        return [
            GroupResult(status=s, consensus=c, coverage=cov) if s is StatusType.SUCCESS
            else GroupResult(status=s, error=f"consensus generation failed: {s}")
            for c, cov, s in zip(consensus, coverage, status)
        ]

    def _harvest_msa(self, batch: ComputeBatch) -> List[GroupResult]:
        alignments, status = batch.get_msa()
        return [
            GroupResult(status=s, alignment=list(rows)) if s is StatusType.SUCCESS
            else GroupResult(status=s, error=f"MSA generation failed: {s}")
            for rows, s in zip(alignments, status)
        ]
