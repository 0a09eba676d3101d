"""Conversation, step and tabular data models for sqlpilot."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ── Tabular data ──────────────────────────────────────────────────────────────


class TableSchema(BaseModel):
    """
    A table known to the query engine. Read-only to the orchestrator.

    ``table_name`` is the safe SQL identifier (e.g. ``t_83412_ab12cd``);
    ``original_name`` is the human-readable source label the model uses to map
    business concepts onto tables.
    """

    table_name: str
    original_name: str | None = None
    columns: list[str] = Field(default_factory=list)
    row_count: int = 0
    samples: list[dict[str, Any]] = Field(default_factory=list)


class QueryResult(BaseModel):
    """The outcome of one SQL execution. ``error`` and data are mutually exclusive."""

    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @classmethod
    def failure(cls, message: str) -> QueryResult:
        return cls(error=message or "Unknown SQL error")


# ── Conversation ──────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A finalized tool invocation requested by the model (or rescued from its text)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = ""
    """Raw JSON argument text exactly as assembled from the stream."""

    def to_llm(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ConversationMessage(BaseModel):
    """
    One entry of the conversation history sent to the model every iteration.

    History is append-only. ``content`` may be ``None`` only for assistant
    messages that carry nothing but tool calls.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def system(cls, content: str) -> ConversationMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ConversationMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str | None = None, tool_calls: list[ToolCall] | None = None
    ) -> ConversationMessage:
        return cls(role="assistant", content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, call: ToolCall, content: str) -> ConversationMessage:
        return cls(role="tool", content=content, tool_call_id=call.id, name=call.name)

    def to_llm(self) -> dict[str, Any]:
        """Render the OpenAI-compatible message dict litellm expects."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_llm() for call in self.tool_calls]
        if self.role == "tool":
            payload["tool_call_id"] = self.tool_call_id
            payload["name"] = self.name
        return payload


# ── Agent steps ───────────────────────────────────────────────────────────────

StepKind = Literal["thought", "action", "observation"]
StepStatus = Literal["streaming", "complete", "error"]


class AgentStep(BaseModel):
    """
    One entry of the per-turn progress log shown to the caller.

    Only the most recently appended step may change, and only while its
    status is ``streaming``. See :class:`sqlpilot.steps.StepLog`.
    """

    id: str
    kind: StepKind
    content: str = ""
    status: StepStatus = "streaming"
    tool_name: str | None = None
    """Set on action steps."""
    result: QueryResult | list[TableSchema] | None = None
    """Structured payload on observation steps."""

    @property
    def is_final(self) -> bool:
        return self.status != "streaming"


# ── Results ───────────────────────────────────────────────────────────────────


class CompressionResult(BaseModel):
    """The outcome of folding a result set through the model."""

    text: str
    batch_size: int = 0
    total_batches: int = 0
    failed_batches: list[int] = Field(default_factory=list)
    """1-based indices of batches that fell back to raw JSON."""


class RunResult(BaseModel):
    """
    The result of a single ``AgentSession.run()`` call.

    ``status`` is ``answered`` when a final answer was produced, ``exhausted``
    when the iteration budget ran out without one, ``failed`` on a transport
    or dispatch error, and ``cancelled`` when the caller's token fired.
    """

    session_id: str
    status: Literal["answered", "exhausted", "failed", "cancelled"]
    final_answer: str | None = None
    iterations: int = 0
    steps: list[AgentStep] = Field(default_factory=list)
    error: str | None = None
