"""Result-set compression: adaptive batching and the LLM fold."""

from sqlpilot.compression.accumulator import CompressionAccumulator, split_batches
from sqlpilot.compression.batching import (
    ComplexityMetrics,
    adaptive_batch_size,
    complexity_score,
    measure_complexity,
)

__all__ = [
    "ComplexityMetrics",
    "CompressionAccumulator",
    "adaptive_batch_size",
    "complexity_score",
    "measure_complexity",
    "split_batches",
]
