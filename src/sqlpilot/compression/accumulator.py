"""Iterative LLM summarisation of oversized query results.

A result set is split into consecutive batches and folded left through the
model: each round receives the running summary plus the next batch and must
return a complete replacement summary. A batch the model fails on is kept as
raw JSON appended to the running text, so no rows are silently dropped.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from sqlpilot.compression.batching import adaptive_batch_size
from sqlpilot.errors import AgentCancelledError, CancellationToken, check_cancelled
from sqlpilot.models.config import CompressionConfig
from sqlpilot.models.message import CompressionResult
from sqlpilot.prompts import COMPRESSION_PROMPT, NO_PRIOR_CONTEXT, render

ProgressCallback = Callable[[int, int, int], None]
"""``(batch_index, total_batches, batch_size)``; ``batch_index`` is 1-based."""


def split_batches(rows: Sequence[Any], batch_size: int) -> list[list[Any]]:
    """Consecutive slices of *rows*; only the last may be shorter than *batch_size*."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(rows[start : start + batch_size]) for start in range(0, len(rows), batch_size)]


def batch_to_json(batch: Sequence[Any]) -> str:
    return json.dumps(list(batch), ensure_ascii=False, default=str)


def progress_message(batch_index: int, total_batches: int, batch_size: int) -> str:
    return f"Compressed batch {batch_index}/{total_batches} (batch size {batch_size})"


class CompressionAccumulator:
    """
    Fold a result set into a single plain-text summary, one batch at a time.

    Rounds are strictly serial: batch ``i + 1`` is never requested before
    batch ``i`` has been folded, because its prompt needs batch ``i``'s output.

    Args:
        llm_call: Async callable ``(*, messages, temperature) -> str``.
        config: Batching and fold constants.
        logger: Bound structlog logger; defaults to ``sqlpilot.compression``.
    """

    def __init__(
        self,
        llm_call: Any,
        config: CompressionConfig | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._llm_call = llm_call
        self._config = config or CompressionConfig()
        self._logger = logger or structlog.get_logger("sqlpilot.compression")

    async def fold(
        self,
        rows: Sequence[Any],
        *,
        question: str,
        sql: str,
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> CompressionResult:
        """
        Compress *rows* into text that answers *question*.

        Args:
            rows: The query result rows, in result order.
            question: The user's original question, included in every prompt.
            sql: The executed (sanitized) SQL, included in every prompt.
            batch_size: Rows per round. Defaults to :func:`adaptive_batch_size`.
            on_progress: Called after every round, failed rounds included.
            cancel: Checked before every round.

        Returns:
            The final running text plus batch bookkeeping. Empty input yields
            ``"[]"`` with zero batches and no model calls.

        Raises:
            AgentCancelledError: If *cancel* fires between rounds.
        """
        if not rows:
            return CompressionResult(text="[]", batch_size=0, total_batches=0)

        size = batch_size or adaptive_batch_size(rows, self._config)
        batches = split_batches(rows, size)
        total = len(batches)
        self._logger.info(
            "compression_started", rows=len(rows), batch_size=size, total_batches=total
        )

        accumulated = ""
        failed: list[int] = []
        for index, batch in enumerate(batches, start=1):
            check_cancelled(cancel)
            batch_json = batch_to_json(batch)
            prompt = render(
                COMPRESSION_PROMPT,
                question=question,
                sql=sql,
                previous=accumulated or NO_PRIOR_CONTEXT,
                batch_index=index,
                total_batches=total,
                batch_json=batch_json,
            )
            try:
                accumulated = await self._llm_call(
                    messages=[{"role": "user", "content": prompt}],
                    temperature=self._config.temperature,
                )
            except AgentCancelledError:
                raise
            except Exception as exc:
                self._logger.warning(
                    "compression_batch_failed", batch=index, total_batches=total, error=str(exc)
                )
                failed.append(index)
                accumulated += f"\n[Batch {index} raw data]: {batch_json}"

            if on_progress is not None:
                on_progress(index, total, size)

        self._logger.info(
            "compression_finished",
            total_batches=total,
            failed_batches=len(failed),
            chars=len(accumulated),
        )
        return CompressionResult(
            text=accumulated, batch_size=size, total_batches=total, failed_batches=failed
        )
