"""Reassembly of streamed model output into text and tool calls.

Providers stream a turn as many small deltas. Text arrives as content
fragments; each tool call arrives as fragments tagged with an ``index`` whose
name and JSON argument text must be concatenated in arrival order. The
argument text is only meaningful once the stream has ended.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlpilot.models.message import ToolCall

TOOL_CALL_CLOSE_TAG = "</tool_call>"


@dataclass(frozen=True)
class ToolCallDelta:
    """One fragment of a tool call. All text fields are partial."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class StreamDelta:
    """One streamed increment: a content fragment and/or tool-call fragments."""

    content: str | None = None
    tool_calls: tuple[ToolCallDelta, ...] = ()

    @classmethod
    def from_chunk(cls, chunk: Any) -> StreamDelta | None:
        """
        Normalize a litellm streaming chunk (object or dict form).

        Returns ``None`` for chunks without a delta, such as usage-only chunks.
        """
        choices = _get(chunk, "choices")
        if not choices:
            return None
        delta = _get(choices[0], "delta")
        if delta is None:
            return None

        fragments: list[ToolCallDelta] = []
        for position, raw in enumerate(_get(delta, "tool_calls") or []):
            function = _get(raw, "function")
            index = _get(raw, "index")
            fragments.append(
                ToolCallDelta(
                    index=position if index is None else int(index),
                    id=_get(raw, "id"),
                    name=_get(function, "name") if function is not None else None,
                    arguments=_get(function, "arguments") if function is not None else None,
                )
            )
        return cls(content=_get(delta, "content"), tool_calls=tuple(fragments))


def _get(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


@dataclass
class _PartialToolCall:
    index: int
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class StreamParser:
    """
    Accumulate one turn's deltas.

    Partial tool calls live in an arena keyed by stream index; the first
    fragment for an index creates an empty record and later fragments append
    to it. Nothing is parsed as JSON here.

    Example::

        parser = StreamParser()
        for delta in deltas:
            if parser.feed(delta):
                show(parser.text)
        text, calls = parser.finalize()
    """

    def __init__(self) -> None:
        self._text: list[str] = []
        self._arena: dict[int, _PartialToolCall] = {}
        self._finalized = False

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self._arena)

    def feed(self, delta: StreamDelta) -> bool:
        """
        Merge *delta* into the turn.

        Returns:
            True if the visible text grew.

        Raises:
            RuntimeError: If called after :meth:`finalize`.
        """
        if self._finalized:
            raise RuntimeError("StreamParser.feed() called after finalize()")

        grew = False
        if delta.content:
            cleaned = delta.content.replace(TOOL_CALL_CLOSE_TAG, "")
            if cleaned:
                self._text.append(cleaned)
                grew = True

        for fragment in delta.tool_calls:
            partial = self._arena.get(fragment.index)
            if partial is None:
                partial = self._arena[fragment.index] = _PartialToolCall(index=fragment.index)
            if fragment.id:
                partial.id = fragment.id
            if fragment.name:
                partial.name += fragment.name
            if fragment.arguments:
                partial.arguments.append(fragment.arguments)
        return grew

    def finalize(self) -> tuple[str, list[ToolCall]]:
        """Freeze the turn into its text and tool calls, in stream-index order."""
        self._finalized = True
        calls = [
            ToolCall(
                id=partial.id or f"call_{index}",
                name=partial.name,
                arguments="".join(partial.arguments),
            )
            for index, partial in sorted(self._arena.items())
        ]
        return self.text, calls
