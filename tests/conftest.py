"""Shared fixtures for sqlpilot tests."""

from __future__ import annotations

import copy
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio

from sqlpilot.events.bus import AgentEvent, EventBus
from sqlpilot.llm.client import ChatModel
from sqlpilot.models.config import LLMSettings
from sqlpilot.store.memory import TableStore
from sqlpilot.streaming.parser import StreamDelta, ToolCallDelta

SALES_ROWS = [
    {"city": "Beijing", "amount": "30", "year": "2021"},
    {"city": "Shanghai", "amount": "20", "year": "2021"},
    {"city": "Shenzhen", "amount": "10", "year": "2020"},
]

Turn = list[StreamDelta | BaseException]


def text_turn(text: str, chunk: int = 5) -> Turn:
    """A turn that streams *text* in *chunk*-sized content fragments."""
    return [StreamDelta(content=text[i : i + chunk]) for i in range(0, len(text), chunk)]


def tool_turn(*calls: tuple[str, str], text: str = "") -> Turn:
    """
    A turn that requests one tool call per ``(name, arguments)`` pair.

    Each call streams like a real provider: id and name first, then the
    argument text split across two fragments.
    """
    deltas: Turn = text_turn(text)
    for index, (name, arguments) in enumerate(calls):
        half = len(arguments) // 2
        deltas.append(
            StreamDelta(tool_calls=(ToolCallDelta(index=index, id=f"call_{index}", name=name),))
        )
        if arguments:
            deltas.append(
                StreamDelta(tool_calls=(ToolCallDelta(index=index, arguments=arguments[:half]),))
            )
            deltas.append(
                StreamDelta(tool_calls=(ToolCallDelta(index=index, arguments=arguments[half:]),))
            )
    return deltas


class ScriptedLLM(ChatModel):
    """
    Deterministic ChatModel replaying scripted turns.

    A turn is a list of deltas; an exception instance inside the list is
    raised at that point of the stream. When the script runs out the last
    turn is repeated if ``repeat_last`` is set, otherwise an empty turn is
    streamed. ``completions`` entries are returned (or raised) in order by
    :meth:`complete`; a callable entry is called with the messages.
    """

    def __init__(
        self,
        turns: list[Turn],
        completions: list[str | BaseException | Callable[[list[dict[str, Any]]], str]]
        | None = None,
        *,
        repeat_last: bool = False,
        requires_credentials: bool = True,
    ) -> None:
        self._turns = list(turns)
        self._completions = list(completions or [])
        self._repeat_last = repeat_last
        self._requires_credentials = requires_credentials
        self.requests: list[list[dict[str, Any]]] = []
        self.completion_requests: list[list[dict[str, Any]]] = []

    @property
    def requires_credentials(self) -> bool:
        return self._requires_credentials

    def _next_turn(self) -> Turn:
        if len(self._turns) > 1 or (self._turns and not self._repeat_last):
            return self._turns.pop(0)
        if self._turns:
            return self._turns[0]
        return []

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> AsyncGenerator[StreamDelta, None]:
        self.requests.append(copy.deepcopy(messages))
        for item in self._next_turn():
            if isinstance(item, BaseException):
                raise item
            yield item

    async def complete(
        self, *, messages: list[dict[str, Any]], temperature: float | None = None
    ) -> str:
        self.completion_requests.append(copy.deepcopy(messages))
        if not self._completions:
            return "summary"
        item = self._completions.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(messages)
        return item


@pytest.fixture
def settings():
    """LLMSettings with a dummy key so the credential check passes."""
    return LLMSettings(api_key="test-key", model="openai/gpt-4o-mini")


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[AgentEvent, dict[str, Any]]] = []

    def _collect(event: AgentEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest_asyncio.fixture
async def table_store():
    """Open in-memory TableStore. Closed after each test."""
    store = TableStore()
    await store.open()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sales_store(table_store):
    """TableStore holding the three SALES_ROWS as ``t_sales``."""
    await table_store.register_table("t_sales", SALES_ROWS, original_name="sales.xlsx")
    return table_store
