"""
Batched partial-order alignment scheduling.

Packs a workload of variable-size alignment groups into capacity-limited
compute batches, drives each batch through fill / overflow / flush rounds,
and harvests per-group consensus or multi-alignment results.
"""

__version__ = "0.1.0"
