"""Adaptive batch sizing from a weighted complexity model.

The complexity of a result set is estimated from a sample of its rows::

    C_f = min(avg_fields / field_norm, 1)          field complexity
    C_l = min(avg_row_length / length_norm, 1)     length complexity
    C_t = alpha * R_text + beta * R_long           type complexity

    C = clamp(w_f * C_f + w_l * C_l + w_t * C_t, 0, 1)
    B = floor(B_max - (B_max - B_min) * C), clamped to [B_min, B_max]

Wide, long or text-heavy rows therefore get smaller batches, so each
compression prompt stays a similar size regardless of the data's shape.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sqlpilot.models.config import CompressionConfig


@dataclass(frozen=True)
class ComplexityMetrics:
    """Sample statistics feeding the complexity model."""

    avg_fields: float
    avg_row_length: float
    text_ratio: float
    """Fraction of non-null cells holding text."""
    long_text_ratio: float
    """Fraction of non-null cells holding text at least ``long_text_threshold`` long."""
    sampled_rows: int


def serialize_row(row: Mapping[str, Any]) -> str:
    """Compact JSON for *row*; space-joined string values if it is not serializable."""
    try:
        return json.dumps(row, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return " ".join("" if value is None else str(value) for value in row.values())


def measure_complexity(
    rows: Sequence[Any], config: CompressionConfig | None = None
) -> ComplexityMetrics:
    """
    Compute complexity metrics over the first ``config.sample_rows`` rows.

    Rows that are not mappings still count toward the sample size but
    contribute no fields, length or cells.
    """
    cfg = config or CompressionConfig()
    sample_count = min(len(rows), cfg.sample_rows)
    if sample_count == 0:
        return ComplexityMetrics(0.0, 0.0, 0.0, 0.0, 0)

    total_fields = 0
    total_chars = 0
    total_cells = 0
    text_cells = 0
    long_text_cells = 0

    for row in rows[:sample_count]:
        if not isinstance(row, Mapping):
            continue
        total_fields += len(row)
        total_chars += len(serialize_row(row))
        for value in row.values():
            if value is None:
                continue
            total_cells += 1
            if isinstance(value, str):
                text_cells += 1
                if len(value) >= cfg.long_text_threshold:
                    long_text_cells += 1

    return ComplexityMetrics(
        avg_fields=total_fields / sample_count,
        avg_row_length=total_chars / sample_count,
        text_ratio=text_cells / total_cells if total_cells else 0.0,
        long_text_ratio=long_text_cells / total_cells if total_cells else 0.0,
        sampled_rows=sample_count,
    )


def complexity_score(metrics: ComplexityMetrics, config: CompressionConfig | None = None) -> float:
    """Composite complexity ``C`` in ``[0, 1]``."""
    cfg = config or CompressionConfig()
    field_c = min(metrics.avg_fields / cfg.field_norm, 1.0)
    length_c = min(metrics.avg_row_length / cfg.length_norm, 1.0)
    type_c = cfg.text_alpha * metrics.text_ratio + cfg.long_text_beta * metrics.long_text_ratio
    score = cfg.field_weight * field_c + cfg.length_weight * length_c + cfg.type_weight * type_c
    return min(max(score, 0.0), 1.0)


def batch_size_for_score(score: float, config: CompressionConfig | None = None) -> int:
    cfg = config or CompressionConfig()
    size = math.floor(cfg.max_batch_size - (cfg.max_batch_size - cfg.min_batch_size) * score)
    return max(cfg.min_batch_size, min(size, cfg.max_batch_size))


def adaptive_batch_size(rows: Sequence[Any], config: CompressionConfig | None = None) -> int:
    """
    Number of rows to send per compression round.

    Returns ``config.default_batch_size`` (10) for an empty result set,
    otherwise an integer in ``[min_batch_size, max_batch_size]``.
    """
    cfg = config or CompressionConfig()
    if not rows:
        return cfg.default_batch_size
    return batch_size_for_score(complexity_score(measure_complexity(rows, cfg), cfg), cfg)
