"""Tests for the compression accumulator fold."""

from __future__ import annotations

import json

import pytest

from sqlpilot.compression.accumulator import CompressionAccumulator, split_batches
from sqlpilot.errors import AgentCancelledError, CancellationToken
from sqlpilot.prompts import NO_PRIOR_CONTEXT

ROWS = [{"city": f"c{i}", "amount": str(i)} for i in range(6)]


class RecordingLLM:
    """Async llm_call that records prompts and replays scripted replies."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def __call__(self, *, messages, temperature):
        self.prompts.append(messages[-1]["content"])
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class TestSplitBatches:
    def test_consecutive_slices(self):
        assert split_batches([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            split_batches([1], 0)


class TestCompressionAccumulator:
    async def test_empty_input_makes_no_calls(self):
        llm = RecordingLLM([])
        result = await CompressionAccumulator(llm).fold([], question="q", sql="s")
        assert result.text == "[]"
        assert result.total_batches == 0
        assert llm.prompts == []

    async def test_each_round_replaces_the_running_text(self):
        llm = RecordingLLM(["after batch 1", "after batch 2", "after batch 3"])
        result = await CompressionAccumulator(llm).fold(
            ROWS, question="Total amount?", sql="SELECT * FROM t", batch_size=2
        )
        assert result.text == "after batch 3"
        assert result.total_batches == 3
        assert result.failed_batches == []
        assert len(llm.prompts) == 3
        assert "after batch 1" in llm.prompts[1]
        assert "after batch 2" in llm.prompts[2]
        assert "after batch 1" not in llm.prompts[2]

    async def test_first_prompt_carries_context(self):
        llm = RecordingLLM(["done"])
        await CompressionAccumulator(llm).fold(
            ROWS[:2], question="Which city?", sql="SELECT city FROM t", batch_size=5
        )
        prompt = llm.prompts[0]
        assert NO_PRIOR_CONTEXT in prompt
        assert "Which city?" in prompt
        assert "SELECT city FROM t" in prompt
        assert json.dumps(ROWS[:2], ensure_ascii=False) in prompt
        assert "(1/1)" in prompt

    async def test_failed_batch_appends_raw_marker_and_fold_continues(self):
        llm = RecordingLLM(["summary one", RuntimeError("LLM unavailable"), "final summary"])
        result = await CompressionAccumulator(llm).fold(
            ROWS, question="q", sql="s", batch_size=2
        )

        marker = f"\n[Batch 2 raw data]: {json.dumps(ROWS[2:4], ensure_ascii=False)}"
        assert "summary one" + marker in llm.prompts[2]
        assert result.text == "final summary"
        assert result.failed_batches == [2]

    async def test_failed_last_batch_leaves_marker_in_result(self):
        llm = RecordingLLM(["summary one", ValueError("bad reply")])
        result = await CompressionAccumulator(llm).fold(
            ROWS[:4], question="q", sql="s", batch_size=2
        )
        assert result.text.startswith("summary one\n[Batch 2 raw data]: ")
        assert json.loads(result.text.split(": ", 1)[1]) == ROWS[2:4]

    async def test_progress_reported_after_every_round(self):
        llm = RecordingLLM(["a", RuntimeError("boom"), "c"])
        progress: list[tuple[int, int, int]] = []
        await CompressionAccumulator(llm).fold(
            ROWS,
            question="q",
            sql="s",
            batch_size=2,
            on_progress=lambda i, n, b: progress.append((i, n, b)),
        )
        assert progress == [(1, 3, 2), (2, 3, 2), (3, 3, 2)]

    async def test_default_batch_size_is_adaptive(self):
        rows = [{"a": i} for i in range(25)]
        llm = RecordingLLM(["only round"])
        result = await CompressionAccumulator(llm).fold(rows, question="q", sql="s")
        assert result.batch_size == 99
        assert result.total_batches == 1

    async def test_cancellation_between_rounds(self):
        llm = RecordingLLM(["a", "b", "c"])
        token = CancellationToken()
        with pytest.raises(AgentCancelledError):
            await CompressionAccumulator(llm).fold(
                ROWS,
                question="q",
                sql="s",
                batch_size=2,
                on_progress=lambda *_: token.cancel(),
                cancel=token,
            )
        assert len(llm.prompts) == 1

    async def test_cancellation_error_from_call_is_not_swallowed(self):
        llm = RecordingLLM([AgentCancelledError("stop")])
        with pytest.raises(AgentCancelledError):
            await CompressionAccumulator(llm).fold(ROWS, question="q", sql="s", batch_size=2)
