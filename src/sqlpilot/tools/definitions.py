"""The fixed tool set declared to the model on every turn."""

from __future__ import annotations

from typing import Any

GET_DATABASE_SCHEMA = "get_database_schema"
RUN_SQL = "run_sql"

TOOL_NAMES: frozenset[str] = frozenset({GET_DATABASE_SCHEMA, RUN_SQL})

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": GET_DATABASE_SCHEMA,
            "description": (
                "Get the schema of all tables: SQL table ids, source labels, "
                "column names, row counts and sample rows."
            ),
            "parameters": {"type": "object", "properties": {}, "required": []},
        },
    },
    {
        "type": "function",
        "function": {
            "name": RUN_SQL,
            "description": (
                "Execute a SQL query. Large results are analysed and compressed "
                "automatically before they are returned."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The SQL query to execute.",
                    },
                },
                "required": ["query"],
            },
        },
    },
]
