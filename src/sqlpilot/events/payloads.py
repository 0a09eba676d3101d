"""Typed payload definitions for each AgentEvent.

Usage example::

    from sqlpilot.events.bus import AgentEvent, EventBus
    from sqlpilot.events.payloads import CompressionProgressPayload

    def on_progress(event: AgentEvent, payload: CompressionProgressPayload) -> None:
        print(f"batch {payload['batch']}/{payload['total_batches']}")

    bus.subscribe(AgentEvent.COMPRESSION_PROGRESS, on_progress)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionStartedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.SESSION_STARTED`."""

    session_id: str
    model: str
    question: str


class IterationStartedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.ITERATION_STARTED`."""

    session_id: str
    iteration: int
    """1-based iteration number."""


class StepsUpdatedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.STEPS_UPDATED`."""

    session_id: str
    step_count: int
    step_id: str
    """The step that was appended or mutated (always the tail)."""
    status: str


# ── Tools ─────────────────────────────────────────────────────────────────────


class ToolCallRescuedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.TOOL_CALL_RESCUED`."""

    session_id: str
    tool: str
    arguments: str


class ToolDispatchedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.TOOL_DISPATCHED`."""

    session_id: str
    tool: str
    is_error: bool


class ArgumentParseFailedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.ARGUMENT_PARSE_FAILED`."""

    session_id: str
    tool: str
    arguments: str
    """The raw argument text that failed to parse."""


class CompressionProgressPayload(TypedDict):
    """Payload for :attr:`AgentEvent.COMPRESSION_PROGRESS`."""

    session_id: str
    batch: int
    total_batches: int
    batch_size: int


class DoomLoopDetectedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.DOOM_LOOP_DETECTED`."""

    session_id: str
    tool: str


# ── Terminal outcomes ─────────────────────────────────────────────────────────


class FinalAnswerPayload(TypedDict):
    """Payload for :attr:`AgentEvent.FINAL_ANSWER`."""

    session_id: str
    answer: str


class SessionExhaustedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.SESSION_EXHAUSTED`."""

    session_id: str
    iterations: int


class SessionFailedPayload(TypedDict):
    """Payload for :attr:`AgentEvent.SESSION_FAILED` and :attr:`AgentEvent.SESSION_CANCELLED`."""

    session_id: str
    error: str
