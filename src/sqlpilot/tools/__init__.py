"""Tool declarations, dispatch and text-call rescue."""

from sqlpilot.tools.definitions import GET_DATABASE_SCHEMA, RUN_SQL, TOOL_DEFINITIONS
from sqlpilot.tools.dispatcher import (
    CompressionReporter,
    ToolDispatcher,
    ToolOutcome,
    format_schema,
    parse_tool_arguments,
)
from sqlpilot.tools.rescue import detect_manual_tool_call

__all__ = [
    "GET_DATABASE_SCHEMA",
    "RUN_SQL",
    "TOOL_DEFINITIONS",
    "CompressionReporter",
    "ToolDispatcher",
    "ToolOutcome",
    "detect_manual_tool_call",
    "format_schema",
    "parse_tool_arguments",
]
