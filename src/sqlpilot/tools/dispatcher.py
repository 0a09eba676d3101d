"""Tool execution for the agent loop.

Every tool outcome, including SQL errors, empty results and unknown tool
names, is returned as observation text for the model to read. Only
cancellation propagates out of :meth:`ToolDispatcher.dispatch`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import structlog

from sqlpilot.compression.accumulator import CompressionAccumulator
from sqlpilot.compression.batching import adaptive_batch_size
from sqlpilot.errors import (
    AgentCancelledError,
    ArgumentParseError,
    CancellationToken,
    CompressionError,
    check_cancelled,
)
from sqlpilot.models.config import CompressionConfig
from sqlpilot.models.message import QueryResult, TableSchema
from sqlpilot.prompts import (
    COMPRESSED_RESULT_HEADER,
    EMPTY_DATABASE,
    EMPTY_RESULT,
    RAW_PREVIEW_HEADER,
)
from sqlpilot.sql.sanitizer import sanitize_sql
from sqlpilot.store.base import QueryEngine, SchemaProvider
from sqlpilot.tools.definitions import GET_DATABASE_SCHEMA, RUN_SQL


@dataclass
class ToolOutcome:
    """What one tool call produced."""

    observation: str
    """Text sent back to the model as the ``tool`` message."""
    result: QueryResult | list[TableSchema] | None = None
    """Structured payload attached to the observation step."""
    is_error: bool = False


class CompressionReporter:
    """
    Receives compression lifecycle notifications from :class:`ToolDispatcher`.

    The default implementation ignores them; the session subclasses it to
    show a progress step while a large result is being folded.
    """

    def compression_started(self, row_count: int, batch_size: int) -> None:
        pass

    def compression_progress(self, batch: int, total_batches: int, batch_size: int) -> None:
        pass

    def compression_finished(self, ok: bool) -> None:
        pass


def parse_tool_arguments(name: str, text: str) -> dict[str, Any]:
    """
    Decode the raw argument text of a finalized tool call.

    Empty or whitespace-only text means no arguments. ``run_sql`` additionally
    requires a non-blank string ``query``.

    Raises:
        ArgumentParseError: If the text is not a JSON object, or ``run_sql``
            has no usable query.
    """
    if not text or not text.strip():
        arguments: Any = {}
    else:
        try:
            arguments = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ArgumentParseError(name, text, str(exc)) from exc
    if not isinstance(arguments, dict):
        raise ArgumentParseError(name, text, "arguments must be a JSON object")
    if name == RUN_SQL:
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ArgumentParseError(name, text, "'query' must be a non-empty string")
    return arguments


def format_schema(schemas: list[TableSchema]) -> str:
    """One ``[Table: <id> (Source: <label>), Rows: <n>] Columns: ...`` line per table."""
    lines = []
    for table in schemas:
        source = f" (Source: {table.original_name})" if table.original_name else ""
        lines.append(
            f"[Table: {table.table_name}{source}, Rows: {table.row_count}] "
            f"Columns: {', '.join(table.columns)}"
        )
    return "\n".join(lines)


class ToolDispatcher:
    """
    Execute the two declared tools against a query engine and schema provider.

    Args:
        engine: Runs SQL.
        schema_provider: Lists tables. Usually the same object as *engine*.
        accumulator: Folds non-empty results through the model.
        config: Compression constants (batch sizing and fallback preview size).
        logger: Bound structlog logger; defaults to ``sqlpilot.tools``.
    """

    def __init__(
        self,
        engine: QueryEngine,
        schema_provider: SchemaProvider,
        accumulator: CompressionAccumulator,
        config: CompressionConfig | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._schema_provider = schema_provider
        self._accumulator = accumulator
        self._config = config or CompressionConfig()
        self._logger = logger or structlog.get_logger("sqlpilot.tools")

    async def dispatch(
        self,
        name: str,
        arguments: dict[str, Any],
        *,
        question: str,
        reporter: CompressionReporter | None = None,
        cancel: CancellationToken | None = None,
    ) -> ToolOutcome:
        """
        Run tool *name* with already-parsed *arguments*.

        Raises:
            AgentCancelledError: If *cancel* fires before or during the call.
        """
        check_cancelled(cancel)
        self._logger.info("tool_invoked", tool=name, arguments=arguments)
        if name == GET_DATABASE_SCHEMA:
            return await self._get_database_schema()
        if name == RUN_SQL:
            return await self._run_sql(
                str(arguments["query"]),
                question=question,
                reporter=reporter or CompressionReporter(),
                cancel=cancel,
            )
        self._logger.error("unknown_tool", tool=name)
        return ToolOutcome(observation=f"Error: unknown tool '{name}'.", is_error=True)

    async def _get_database_schema(self) -> ToolOutcome:
        try:
            schemas = await self._schema_provider.schemas()
        except AgentCancelledError:
            raise
        except Exception as exc:
            self._logger.error("schema_failed", error=str(exc))
            observation = f"Error: could not read the schema: {exc}"
            return ToolOutcome(observation=observation, is_error=True)
        if not schemas:
            return ToolOutcome(observation=EMPTY_DATABASE, result=schemas)
        return ToolOutcome(observation=format_schema(schemas), result=schemas)

    async def _run_sql(
        self,
        query: str,
        *,
        question: str,
        reporter: CompressionReporter,
        cancel: CancellationToken | None,
    ) -> ToolOutcome:
        sql = sanitize_sql(query)
        if sql != query:
            self._logger.debug("sql_sanitized", original=query, sanitized=sql)

        result = await self._engine.execute(sql)
        if not result.ok:
            self._logger.warning("sql_failed", error=result.error)
            return ToolOutcome(observation=result.error or "", result=result, is_error=True)

        self._logger.info("sql_succeeded", rows=result.row_count)
        if result.row_count == 0:
            return ToolOutcome(observation=EMPTY_RESULT, result=result)

        batch_size = adaptive_batch_size(result.rows, self._config)
        reporter.compression_started(result.row_count, batch_size)
        try:
            compressed = await self._accumulator.fold(
                result.rows,
                question=question,
                sql=sql,
                batch_size=batch_size,
                on_progress=reporter.compression_progress,
                cancel=cancel,
            )
            if not compressed.text.strip():
                raise CompressionError("Compression produced no text")
        except AgentCancelledError:
            reporter.compression_finished(False)
            raise
        except Exception as exc:
            self._logger.error("compression_failed", error=str(exc))
            reporter.compression_finished(False)
            limit = self._config.fallback_preview_rows
            preview = json.dumps(result.rows[:limit], ensure_ascii=False, default=str)
            header = RAW_PREVIEW_HEADER.format(limit=limit)
            return ToolOutcome(observation=f"{header}\n{preview}", result=result)

        reporter.compression_finished(True)
        observation = f"{COMPRESSED_RESULT_HEADER}\n{compressed.text}"
        return ToolOutcome(observation=observation, result=result)
