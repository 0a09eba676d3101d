"""Append-only agent step log with a tail-only state machine.

Every step moves through ``streaming -> complete | error``. Only the most
recently appended step may change, and only while it is still ``streaming``;
once it settles it is immutable. Every append or mutation notifies the
listener with a snapshot of the whole log.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from ulid import ULID

from sqlpilot.errors import StepStateError
from sqlpilot.models.message import AgentStep, QueryResult, StepKind, StepStatus, TableSchema

StepListener = Callable[[list[AgentStep], AgentStep], None]


class StepLog:
    """
    Ordered step log owned by one agent session.

    Example::

        log = StepLog(listener=lambda steps, changed: print(changed.status))
        log.append("thought")
        log.update_tail("Looking at the schema")
        log.complete_tail()
    """

    def __init__(self, listener: StepListener | None = None) -> None:
        self._steps: list[AgentStep] = []
        self._listener = listener

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def tail(self) -> AgentStep | None:
        return self._steps[-1] if self._steps else None

    @property
    def tail_is_streaming(self) -> bool:
        return bool(self._steps) and self._steps[-1].status == "streaming"

    def snapshot(self) -> list[AgentStep]:
        """Return deep copies of every step, safe to hand to callers."""
        return [step.model_copy(deep=True) for step in self._steps]

    def append(
        self,
        kind: StepKind,
        content: str = "",
        *,
        status: StepStatus = "streaming",
        tool_name: str | None = None,
        result: QueryResult | list[TableSchema] | None = None,
    ) -> AgentStep:
        """
        Append a new step. The previous tail must already have settled.

        Raises:
            StepStateError: If the current tail is still streaming.
        """
        if self.tail_is_streaming:
            raise StepStateError(
                f"Cannot append a {kind} step while step {self._steps[-1].id} is streaming"
            )
        step = AgentStep(
            id=f"{kind}_{ULID()}",
            kind=kind,
            content=content,
            status=status,
            tool_name=tool_name,
            result=result,
        )
        self._steps.append(step)
        self._notify(step)
        return step

    def update_tail(self, content: str) -> AgentStep:
        """Replace the streaming tail's content without settling it."""
        step = self._streaming_tail("update")
        step.content = content
        self._notify(step)
        return step

    def complete_tail(self, content: str | None = None) -> AgentStep:
        """Settle the streaming tail as ``complete``, optionally replacing its content."""
        return self._settle("complete", content)

    def fail_tail(self, content: str | None = None) -> AgentStep:
        """Settle the streaming tail as ``error``, optionally replacing its content."""
        return self._settle("error", content)

    def _settle(self, status: StepStatus, content: str | None) -> AgentStep:
        step = self._streaming_tail(status)
        if content is not None:
            step.content = content
        step.status = status
        self._notify(step)
        return step

    def _streaming_tail(self, action: str) -> AgentStep:
        if not self._steps:
            raise StepStateError(f"Cannot {action}: the step log is empty")
        step = self._steps[-1]
        if step.status != "streaming":
            raise StepStateError(
                f"Cannot {action}: step {step.id} already settled as {step.status}"
            )
        return step

    def _notify(self, changed: AgentStep) -> None:
        if self._listener is not None:
            self._listener(self.snapshot(), changed)


def step_summary(step: AgentStep) -> dict[str, Any]:
    """Compact representation of a step for structured log lines."""
    return {
        "step_id": step.id,
        "kind": step.kind,
        "status": step.status,
        "tool": step.tool_name,
        "chars": len(step.content),
    }
