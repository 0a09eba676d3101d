"""
Example 02: Custom Backends
===========================

Demonstrates plugging your own components into AgentSession:
- A ChatModel that replays scripted turns instead of calling a provider
- A DataStore wrapping data you already hold in Python
- Subscribing to lifecycle events on the EventBus
- Cancelling a run from another task with a CancellationToken

Run:
    uv run python examples/02_custom_backends.py
"""

import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlpilot import (  # noqa: E402
    AgentEvent,
    AgentSession,
    CancellationToken,
    ChatModel,
    DataStore,
    EventBus,
    LLMSettings,
    QueryResult,
    TableSchema,
)
from sqlpilot.streaming import StreamDelta, ToolCallDelta  # noqa: E402

# ---------------------------------------------------------------------------
# A ChatModel stub: replace with your own SDK call
# ---------------------------------------------------------------------------


class ScriptedModel(ChatModel):
    """Asks for the schema, runs one query, then answers."""

    def __init__(self) -> None:
        self._turn = 0

    @property
    def requires_credentials(self) -> bool:
        return False

    async def stream(self, messages, *, tools=None, temperature=None):
        self._turn += 1
        if self._turn == 1:
            yield StreamDelta(
                tool_calls=(ToolCallDelta(0, id="c1", name="get_database_schema", arguments="{}"),)
            )
        elif self._turn == 2:
            query = json.dumps({"query": "SELECT [name], [score] FROM [t_scores]"})
            yield StreamDelta(tool_calls=(ToolCallDelta(0, id="c2", name="run_sql"),))
            yield StreamDelta(tool_calls=(ToolCallDelta(0, arguments=query),))
        else:
            for word in "Ada has the top score, followed by Grace.".split(" "):
                yield StreamDelta(content=word + " ")
                await asyncio.sleep(0.05)

    async def complete(self, *, messages, temperature=None) -> str:
        return "name: Ada, score: 97\nname: Grace, score: 91"


# ---------------------------------------------------------------------------
# A DataStore over a plain list of dicts
# ---------------------------------------------------------------------------


class ListStore(DataStore):
    def __init__(self, rows: list[dict]) -> None:
        self._rows = rows

    async def execute(self, sql: str) -> QueryResult:
        if "t_scores" not in sql:
            return QueryResult.failure("no such table")
        return QueryResult(columns=list(self._rows[0]), rows=self._rows)

    async def schemas(self) -> list[TableSchema]:
        return [
            TableSchema(
                table_name="t_scores",
                original_name="scores.csv",
                columns=list(self._rows[0]),
                row_count=len(self._rows),
                samples=self._rows[:3],
            )
        ]


async def main() -> None:
    store = ListStore([{"name": "Ada", "score": 97}, {"name": "Grace", "score": 91}])
    bus = EventBus()
    bus.subscribe(AgentEvent.TOOL_DISPATCHED, lambda e, p: print(f"  tool done: {p['tool']}"))
    bus.subscribe(AgentEvent.FINAL_ANSWER, lambda e, p: print(f"  answer: {p['answer']}"))

    print("=== Run to completion ===")
    session = AgentSession(store, LLMSettings(), llm=ScriptedModel(), event_bus=bus)
    result = await session.run("Who scored highest?")
    print(f"Status: {result.status}\n")

    print("=== Cancel while the answer streams ===")
    token = CancellationToken()
    session = AgentSession(store, LLMSettings(), llm=ScriptedModel(), event_bus=bus)
    task = asyncio.create_task(session.run("Who scored highest?", cancel=token))
    await asyncio.sleep(0.1)
    token.cancel()
    result = await task
    print(f"Status: {result.status} ({result.error})")


if __name__ == "__main__":
    asyncio.run(main())
