"""In-process pub/sub event bus for sqlpilot session lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["AgentEvent", dict[str, Any]], None | Awaitable[None]]


class AgentEvent(StrEnum):
    """All event types published by sqlpilot components.

    Typed payload definitions for each event live in
    :mod:`sqlpilot.events.payloads`.

    **Payload schemas by event:**

    ``SESSION_STARTED``
        ``session_id: str``, ``model: str``, ``question: str``

    ``ITERATION_STARTED``
        ``session_id: str``, ``iteration: int``

    ``STEPS_UPDATED``
        ``session_id: str``, ``step_count: int``, ``step_id: str``,
        ``status: str``; fired after every append or mutation of the step log.

    ``TOOL_CALL_RESCUED``
        ``session_id: str``, ``tool: str``, ``arguments: str``

    ``TOOL_DISPATCHED``
        ``session_id: str``, ``tool: str``, ``is_error: bool``

    ``ARGUMENT_PARSE_FAILED``
        ``session_id: str``, ``tool: str``, ``arguments: str``

    ``COMPRESSION_PROGRESS``
        ``session_id: str``, ``batch: int``, ``total_batches: int``,
        ``batch_size: int``

    ``DOOM_LOOP_DETECTED``
        ``session_id: str``, ``tool: str``

    ``FINAL_ANSWER``
        ``session_id: str``, ``answer: str``

    ``SESSION_EXHAUSTED``
        ``session_id: str``, ``iterations: int``

    ``SESSION_FAILED``, ``SESSION_CANCELLED``
        ``session_id: str``, ``error: str``
    """

    SESSION_STARTED = "session.started"
    ITERATION_STARTED = "iteration.started"
    STEPS_UPDATED = "steps.updated"

    # Tools
    TOOL_CALL_RESCUED = "tool.rescued"
    TOOL_DISPATCHED = "tool.dispatched"
    ARGUMENT_PARSE_FAILED = "tool.argument_parse_failed"

    COMPRESSION_PROGRESS = "compression.progress"

    # Safety
    DOOM_LOOP_DETECTED = "doom_loop.detected"

    # Terminal outcomes
    FINAL_ANSWER = "session.final_answer"
    SESSION_EXHAUSTED = "session.exhausted"
    SESSION_FAILED = "session.failed"
    SESSION_CANCELLED = "session.cancelled"


class EventBus:
    """
    Fan-out of :class:`AgentEvent` notifications to subscribed handlers.

    Sync handlers run inline, in subscription order, before ``publish()``
    returns. A coroutine returned by an async handler becomes a task owned by
    the bus; :meth:`drain` awaits every outstanding task, and
    :class:`~sqlpilot.session.AgentSession` drains its bus before ``run()``
    returns. Handler failures are logged and never reach the publisher.

    Example::

        bus = EventBus()
        bus.subscribe(AgentEvent.FINAL_ANSWER, lambda event, payload: print(payload["answer"]))
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[AgentEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = logger or structlog.get_logger("sqlpilot.events")

    def subscribe(self, event: AgentEvent, handler: Handler) -> None:
        """Call *handler* with ``(event, payload)`` whenever *event* is published."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, event: AgentEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    @property
    def pending(self) -> int:
        """Number of async handler tasks that have not finished yet."""
        return len(self._pending)

    def publish(self, event: AgentEvent, payload: dict[str, Any]) -> None:
        for handler in [*self._handlers.get(event, []), *self._global_handlers]:
            try:
                result = handler(event, payload)
            except Exception as exc:
                self._log_failure(event, handler, exc)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(event, handler, result)

    def _schedule(
        self, event: AgentEvent, handler: Handler, coro: Coroutine[Any, Any, Any]
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self._logger.warning("event_handler_dropped", event=str(event), handler=_name(handler))
            return
        task = loop.create_task(self._run_handler(event, handler, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_handler(
        self, event: AgentEvent, handler: Handler, coro: Coroutine[Any, Any, Any]
    ) -> None:
        try:
            await coro
        except Exception as exc:
            self._log_failure(event, handler, exc)

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _log_failure(self, event: AgentEvent, handler: Handler, exc: Exception) -> None:
        self._logger.error(
            "event_handler_error", event=str(event), handler=_name(handler), error=str(exc)
        )


def _name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
