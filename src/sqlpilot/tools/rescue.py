"""Recovery of tool calls the model wrote as plain text.

Some models narrate ``run_sql("SELECT ...")`` instead of emitting a
structured tool call. When a turn produced no structured calls, the final
text is scanned once and at most one call is synthesized.
"""

from __future__ import annotations

import json
import re

from ulid import ULID

from sqlpilot.models.message import ToolCall
from sqlpilot.tools.definitions import GET_DATABASE_SCHEMA, RUN_SQL

_RUN_SQL_QUOTED = re.compile(r"""run_sql\s*\(\s*["'](.+?)["']\s*\)""", re.DOTALL)
_RUN_SQL_BACKTICK = re.compile(r"run_sql\s*\(\s*`(.+?)`\s*\)", re.DOTALL)


def detect_manual_tool_call(text: str) -> ToolCall | None:
    """
    Synthesize a tool call from free text, or return ``None``.

    ``run_sql`` with a quoted or backtick-quoted argument wins over a schema
    request; the schema tool is only inferred when its name appears together
    with ``()`` or the word "call".
    """
    if not text:
        return None

    for pattern in (_RUN_SQL_QUOTED, _RUN_SQL_BACKTICK):
        match = pattern.search(text)
        if match:
            return ToolCall(
                id=f"manual_{ULID()}",
                name=RUN_SQL,
                arguments=json.dumps({"query": match.group(1)}, ensure_ascii=False),
            )

    if GET_DATABASE_SCHEMA in text and ("()" in text or "call" in text.lower()):
        return ToolCall(id=f"manual_{ULID()}", name=GET_DATABASE_SCHEMA, arguments="{}")
    return None
