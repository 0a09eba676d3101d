"""sqlpilot session: the ReAct loop that turns a question into tool calls and an answer."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any, Literal

import structlog
from ulid import ULID

from sqlpilot.compression.accumulator import CompressionAccumulator, progress_message
from sqlpilot.errors import (
    AgentCancelledError,
    ArgumentParseError,
    CancellationToken,
    ConfigurationError,
    check_cancelled,
    run_cancellable,
)
from sqlpilot.events.bus import AgentEvent, EventBus
from sqlpilot.llm.client import ChatModel, LLMClient
from sqlpilot.models.config import LLMSettings, SqlPilotConfig
from sqlpilot.models.message import AgentStep, ConversationMessage, RunResult, ToolCall
from sqlpilot.prompts import INVALID_ARGUMENTS, system_prompt
from sqlpilot.steps import StepLog, step_summary
from sqlpilot.store.base import DataStore
from sqlpilot.streaming.parser import StreamDelta, StreamParser
from sqlpilot.tools.definitions import TOOL_DEFINITIONS
from sqlpilot.tools.dispatcher import CompressionReporter, ToolDispatcher, parse_tool_arguments
from sqlpilot.tools.rescue import detect_manual_tool_call

StepsCallback = Callable[[list[AgentStep]], None | Awaitable[None]]
AnswerCallback = Callable[[str], None | Awaitable[None]]


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"sess"``, ``"call"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


async def _next_delta(stream: AsyncIterator[StreamDelta]) -> StreamDelta | None:
    try:
        return await anext(stream)
    except StopAsyncIteration:
        return None


class _StepProgressReporter(CompressionReporter):
    """Shows a ``thought`` step that tracks compression progress."""

    def __init__(self, steps: StepLog, event_bus: EventBus, session_id: str) -> None:
        self._steps = steps
        self._event_bus = event_bus
        self._session_id = session_id

    def compression_started(self, row_count: int, batch_size: int) -> None:
        self._steps.append(
            "thought",
            f"Compressing {row_count} rows iteratively to extract the key data and insights.\n"
            f"Processing about {batch_size} rows per round.",
        )

    def compression_progress(self, batch: int, total_batches: int, batch_size: int) -> None:
        self._steps.update_tail(progress_message(batch, total_batches, batch_size))
        self._event_bus.publish(
            AgentEvent.COMPRESSION_PROGRESS,
            {
                "session_id": self._session_id,
                "batch": batch,
                "total_batches": total_batches,
                "batch_size": batch_size,
            },
        )

    def compression_finished(self, ok: bool) -> None:
        if not self._steps.tail_is_streaming:
            return
        if ok:
            self._steps.complete_tail()
        else:
            self._steps.fail_tail()


class AgentSession:
    """
    Answers natural-language questions about tabular data with a ReAct loop.

    Each :meth:`run` starts a fresh conversation (system prompt plus the
    question) and alternates model turns with tool dispatch until the model
    answers without calling a tool, or the iteration budget runs out.

    Usage::

        async with TableStore() as store:
            await store.register_table("t_sales", rows, original_name="sales.xlsx")
            session = AgentSession(store, LLMSettings.from_env())
            result = await session.run("Which region sold the most?")
            print(result.final_answer)

    Args:
        store: Query engine and schema provider for the session's tables.
        settings: Model credentials and sampling settings.
        config: Loop and compression settings. Defaults to :class:`SqlPilotConfig`.
        llm: Model backend. Defaults to an :class:`LLMClient` built from *settings*.
        event_bus: Bus for lifecycle events. A private bus is created if omitted.
        logger: Base structlog logger. Bound with ``session_id`` here and handed
            to the dispatcher and compression accumulator.
        session_id: Explicit identifier; generated if omitted.
    """

    def __init__(
        self,
        store: DataStore,
        settings: LLMSettings,
        *,
        config: SqlPilotConfig | None = None,
        llm: ChatModel | None = None,
        event_bus: EventBus | None = None,
        logger: structlog.BoundLogger | None = None,
        session_id: str | None = None,
    ) -> None:
        self._session_id = session_id or make_id("sess")
        self._settings = settings
        self._config = config or SqlPilotConfig()
        self._llm = llm or LLMClient(settings)
        self._event_bus = event_bus or EventBus()

        if logger is not None:
            base = logger.bind(session_id=self._session_id)
            self._logger = base.bind(component="session")
            tools_logger = base.bind(component="tools")
            compression_logger = base.bind(component="compression")
        else:
            self._logger = structlog.get_logger("sqlpilot.session").bind(
                session_id=self._session_id
            )
            tools_logger = structlog.get_logger("sqlpilot.tools").bind(session_id=self._session_id)
            compression_logger = structlog.get_logger("sqlpilot.compression").bind(
                session_id=self._session_id
            )

        accumulator = CompressionAccumulator(
            self._llm.complete, self._config.compression, compression_logger
        )
        self._dispatcher = ToolDispatcher(
            store, store, accumulator, self._config.compression, tools_logger
        )
        self._recent_tool_calls: list[tuple[str, str]] = []
        self._callback_tasks: list[asyncio.Task[Any]] = []

    @property
    def id(self) -> str:
        return self._session_id

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def run(
        self,
        question: str,
        *,
        on_steps: StepsCallback | None = None,
        on_final_answer: AnswerCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> RunResult:
        """
        Answer *question*.

        Args:
            question: The user's natural-language question.
            on_steps: Receives a snapshot of the whole step log after every
                append or mutation. May be sync or async.
            on_final_answer: Receives the final answer text, at most once.
                May be sync or async.
            cancel: Token checked at every suspension point.

        Returns:
            A :class:`RunResult`. Transport and dispatch failures are reported
            through ``status="failed"`` rather than raised.

        Raises:
            ConfigurationError: If the model needs credentials and
                ``settings.api_key`` is empty. Raised before any iteration.
        """
        if self._llm.requires_credentials and not self._settings.api_key:
            raise ConfigurationError(
                "No API key configured. Set LLMSettings.api_key or SQLPILOT_API_KEY."
            )

        steps = StepLog(listener=self._make_step_listener(on_steps))
        history = [
            ConversationMessage.system(system_prompt()),
            ConversationMessage.user(question),
        ]
        self._recent_tool_calls = []
        max_iterations = self._config.agent.max_iterations

        self._logger.info("session_started", question=question, max_iterations=max_iterations)
        self._event_bus.publish(
            AgentEvent.SESSION_STARTED,
            {"session_id": self._session_id, "model": self._settings.model, "question": question},
        )

        iterations = 0
        final_answer: str | None = None
        error: str | None = None
        status: Literal["answered", "exhausted", "failed", "cancelled"] = "exhausted"
        try:
            while iterations < max_iterations:
                check_cancelled(cancel)
                iterations += 1
                self._logger.debug("iteration_started", iteration=iterations)
                self._event_bus.publish(
                    AgentEvent.ITERATION_STARTED,
                    {"session_id": self._session_id, "iteration": iterations},
                )

                text, calls = await self._stream_turn(history, steps, cancel)
                if not calls:
                    rescued = detect_manual_tool_call(text)
                    if rescued is not None:
                        self._logger.info(
                            "tool_call_rescued", tool=rescued.name, arguments=rescued.arguments
                        )
                        self._event_bus.publish(
                            AgentEvent.TOOL_CALL_RESCUED,
                            {
                                "session_id": self._session_id,
                                "tool": rescued.name,
                                "arguments": rescued.arguments,
                            },
                        )
                        calls = [rescued]

                if calls:
                    history.append(ConversationMessage.assistant(text or None, calls))
                    for call in calls:
                        await self._run_tool_call(call, question, history, steps, cancel)
                    continue

                if text.strip():
                    final_answer = text
                    status = "answered"
                    history.append(ConversationMessage.assistant(text))
                    self._logger.info("final_answer", iteration=iterations, chars=len(text))
                    await self._deliver_answer(on_final_answer, text)
                    self._event_bus.publish(
                        AgentEvent.FINAL_ANSWER,
                        {"session_id": self._session_id, "answer": text},
                    )
                    break

                self._logger.warning("empty_turn", iteration=iterations)

            if status == "exhausted":
                self._logger.warning("iterations_exhausted", iterations=iterations)
                self._event_bus.publish(
                    AgentEvent.SESSION_EXHAUSTED,
                    {"session_id": self._session_id, "iterations": iterations},
                )
        except AgentCancelledError as exc:
            status = "cancelled"
            error = str(exc)
            self._logger.info("session_cancelled", iteration=iterations)
            self._record_error(steps, error)
            self._event_bus.publish(
                AgentEvent.SESSION_CANCELLED, {"session_id": self._session_id, "error": error}
            )
        except Exception as exc:
            status = "failed"
            error = str(exc) or type(exc).__name__
            self._logger.error(
                "agent_loop_failed",
                iteration=iterations,
                error=error,
                error_type=type(exc).__name__,
            )
            self._record_error(steps, error)
            self._event_bus.publish(
                AgentEvent.SESSION_FAILED, {"session_id": self._session_id, "error": error}
            )

        await self._drain_callbacks()
        await self._event_bus.drain()
        return RunResult(
            session_id=self._session_id,
            status=status,
            final_answer=final_answer,
            iterations=iterations,
            steps=steps.snapshot(),
            error=error,
        )

    # ── Turn handling ──────────────────────────────────────────────────────────

    async def _stream_turn(
        self,
        history: list[ConversationMessage],
        steps: StepLog,
        cancel: CancellationToken | None,
    ) -> tuple[str, list[ToolCall]]:
        """Stream one model turn into a ``thought`` step; return its text and tool calls."""
        steps.append("thought")
        parser = StreamParser()
        stream = self._llm.stream(
            [message.to_llm() for message in history],
            tools=TOOL_DEFINITIONS,
            temperature=self._settings.temperature,
        )
        async with aclosing(stream):
            while True:
                delta = await run_cancellable(_next_delta(stream), cancel)
                if delta is None:
                    break
                if parser.feed(delta):
                    steps.update_tail(parser.text)

        text, calls = parser.finalize()
        steps.complete_tail(text)
        return text, calls

    async def _run_tool_call(
        self,
        call: ToolCall,
        question: str,
        history: list[ConversationMessage],
        steps: StepLog,
        cancel: CancellationToken | None,
    ) -> None:
        check_cancelled(cancel)
        self._track_tool_call(call)
        steps.append("action", "Parsing arguments...", tool_name=call.name)
        try:
            arguments = parse_tool_arguments(call.name, call.arguments)
        except ArgumentParseError as exc:
            steps.fail_tail(f"Error parsing: {call.arguments}")
            self._logger.warning(
                "tool_arguments_invalid", tool=call.name, arguments=call.arguments, error=exc.reason
            )
            self._event_bus.publish(
                AgentEvent.ARGUMENT_PARSE_FAILED,
                {"session_id": self._session_id, "tool": call.name, "arguments": call.arguments},
            )
            steps.append("observation", INVALID_ARGUMENTS, status="error")
            history.append(ConversationMessage.tool(call, INVALID_ARGUMENTS))
            return

        steps.complete_tail(json.dumps(arguments, ensure_ascii=False))
        reporter = _StepProgressReporter(steps, self._event_bus, self._session_id)
        outcome = await run_cancellable(
            self._dispatcher.dispatch(
                call.name, arguments, question=question, reporter=reporter, cancel=cancel
            ),
            cancel,
        )
        self._event_bus.publish(
            AgentEvent.TOOL_DISPATCHED,
            {"session_id": self._session_id, "tool": call.name, "is_error": outcome.is_error},
        )
        steps.append(
            "observation",
            outcome.observation,
            status="error" if outcome.is_error else "complete",
            result=outcome.result,
        )
        history.append(ConversationMessage.tool(call, outcome.observation))

    def _track_tool_call(self, call: ToolCall) -> None:
        """Record *call* and warn on consecutive identical calls."""
        self._recent_tool_calls.append((call.name, call.arguments))
        threshold = self._config.agent.doom_loop_threshold
        if len(self._recent_tool_calls) < threshold:
            return
        last_n = self._recent_tool_calls[-threshold:]
        if all(entry == last_n[0] for entry in last_n[1:]):
            self._logger.warning("doom_loop_detected", tool=call.name, repeats=threshold)
            self._event_bus.publish(
                AgentEvent.DOOM_LOOP_DETECTED, {"session_id": self._session_id, "tool": call.name}
            )

    def _record_error(self, steps: StepLog, message: str) -> None:
        if steps.tail_is_streaming:
            steps.fail_tail()
        steps.append("thought", f"Agent error: {message}", status="error")

    # ── Callbacks ──────────────────────────────────────────────────────────────

    def _make_step_listener(
        self, on_steps: StepsCallback | None
    ) -> Callable[[list[AgentStep], AgentStep], None]:
        def listener(snapshot: list[AgentStep], changed: AgentStep) -> None:
            self._logger.debug("step_updated", **step_summary(changed))
            self._event_bus.publish(
                AgentEvent.STEPS_UPDATED,
                {
                    "session_id": self._session_id,
                    "step_count": len(snapshot),
                    "step_id": changed.id,
                    "status": changed.status,
                },
            )
            if on_steps is None:
                return
            try:
                result = on_steps(snapshot)
            except Exception as exc:
                self._logger.error("steps_callback_error", error=str(exc))
                return
            if asyncio.iscoroutine(result):
                self._callback_tasks.append(asyncio.ensure_future(result))

        return listener

    async def _deliver_answer(self, on_final_answer: AnswerCallback | None, text: str) -> None:
        if on_final_answer is None:
            return
        try:
            result = on_final_answer(text)
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            self._logger.error("final_answer_callback_error", error=str(exc))

    async def _drain_callbacks(self) -> None:
        """Wait for scheduled async ``on_steps`` deliveries, in scheduling order."""
        tasks, self._callback_tasks = self._callback_tasks, []
        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, Exception):
                self._logger.error("steps_callback_error", error=str(outcome))


async def run_agent(
    question: str,
    store: DataStore,
    settings: LLMSettings,
    *,
    config: SqlPilotConfig | None = None,
    on_steps: StepsCallback | None = None,
    on_final_answer: AnswerCallback | None = None,
    cancel: CancellationToken | None = None,
    llm: ChatModel | None = None,
    event_bus: EventBus | None = None,
    logger: structlog.BoundLogger | None = None,
) -> RunResult:
    """
    One-shot convenience wrapper: build an :class:`AgentSession` and run it.

    Example::

        result = await run_agent(
            "Total loss for Beijing in 2020 and 2021?",
            store,
            LLMSettings.from_env(),
            on_steps=lambda steps: print(steps[-1].content),
        )
    """
    session = AgentSession(
        store, settings, config=config, llm=llm, event_bus=event_bus, logger=logger
    )
    return await session.run(
        question, on_steps=on_steps, on_final_answer=on_final_answer, cancel=cancel
    )
