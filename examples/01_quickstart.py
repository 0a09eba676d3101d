"""
Example 01: Quickstart
======================

Demonstrates the simplest end-to-end usage of sqlpilot:
- Registering rows as SQL tables in an in-memory TableStore
- Running an AgentSession on a natural-language question
- Watching the step log update live through on_steps
- Inspecting the RunResult

Run without an API key:
    SQLPILOT_MOCK_LLM=1 uv run python examples/01_quickstart.py

Run with a real LLM (any litellm model string works):
    SQLPILOT_API_KEY=sk-... SQLPILOT_MODEL=gpt-4o-mini uv run python examples/01_quickstart.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

SALES_2020 = [
    {"region": "Beijing", "product": "Tea", "amount": 120},
    {"region": "Shanghai", "product": "Coffee", "amount": 80},
    {"region": "Shenzhen", "product": "Tea", "amount": 45},
]

SALES_2021 = [
    {"region": "Beijing", "product": "Coffee", "amount": 150},
    {"region": "Shanghai", "product": "Tea", "amount": 95},
    {"region": "Shenzhen", "product": "Coffee", "amount": 60},
]


async def main() -> None:
    from sqlpilot import AgentSession, LLMSettings, TableStore, new_table_id

    print("=== sqlpilot Quickstart ===\n")

    async with TableStore() as store:
        for label, rows in (("sales_2020.xlsx", SALES_2020), ("sales_2021.xlsx", SALES_2021)):
            schema = await store.register_table(new_table_id(), rows, original_name=label)
            print(f"Registered {schema.table_name} ({label}, {schema.row_count} rows)")

        session = AgentSession(store, LLMSettings.from_env())
        print(f"\nSession created: {session.id}\n")

        last_seen: dict[str, str] = {}

        def on_steps(steps) -> None:
            # Print each step once it settles.
            for step in steps:
                if step.is_final and last_seen.get(step.id) != step.status:
                    last_seen[step.id] = step.status
                    label = step.kind if step.tool_name is None else f"{step.kind}:{step.tool_name}"
                    print(f"  [{label}] {step.content[:100]!r}")

        result = await session.run(
            "What were total sales in Beijing across 2020 and 2021?", on_steps=on_steps
        )

    print(f"\nStatus: {result.status} after {result.iterations} iteration(s)")
    if result.final_answer:
        print(f"Answer:\n{result.final_answer}")
    elif result.error:
        print(f"Error: {result.error}")


if __name__ == "__main__":
    asyncio.run(main())
