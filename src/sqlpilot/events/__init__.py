"""sqlpilot event bus."""

from sqlpilot.events.bus import AgentEvent, EventBus, Handler
from sqlpilot.events.payloads import (
    ArgumentParseFailedPayload,
    CompressionProgressPayload,
    DoomLoopDetectedPayload,
    FinalAnswerPayload,
    IterationStartedPayload,
    SessionExhaustedPayload,
    SessionFailedPayload,
    SessionStartedPayload,
    StepsUpdatedPayload,
    ToolCallRescuedPayload,
    ToolDispatchedPayload,
)

__all__ = [
    "AgentEvent",
    "ArgumentParseFailedPayload",
    "CompressionProgressPayload",
    "DoomLoopDetectedPayload",
    "EventBus",
    "FinalAnswerPayload",
    "Handler",
    "IterationStartedPayload",
    "SessionExhaustedPayload",
    "SessionFailedPayload",
    "SessionStartedPayload",
    "StepsUpdatedPayload",
    "ToolCallRescuedPayload",
    "ToolDispatchedPayload",
]
