"""Tests for ToolDispatcher and tool argument parsing."""

from __future__ import annotations

import json

import pytest

from sqlpilot.compression.accumulator import CompressionAccumulator
from sqlpilot.errors import (
    AgentCancelledError,
    ArgumentParseError,
    CancellationToken,
    StoreError,
)
from sqlpilot.models.config import CompressionConfig
from sqlpilot.models.message import QueryResult, TableSchema
from sqlpilot.prompts import (
    COMPRESSED_RESULT_HEADER,
    EMPTY_DATABASE,
    EMPTY_RESULT,
)
from sqlpilot.store.base import DataStore
from sqlpilot.tools.dispatcher import (
    CompressionReporter,
    ToolDispatcher,
    format_schema,
    parse_tool_arguments,
)
from sqlpilot.tools.definitions import GET_DATABASE_SCHEMA, RUN_SQL


class FakeStore(DataStore):
    """DataStore returning canned results and recording executed SQL."""

    def __init__(self, result: QueryResult | None = None, tables=None):
        self.result = result or QueryResult()
        self.tables = tables or []
        self.executed: list[str] = []

    async def execute(self, sql: str) -> QueryResult:
        self.executed.append(sql)
        return self.result

    async def schemas(self) -> list[TableSchema]:
        return list(self.tables)


class BrokenSchemaStore(FakeStore):
    def __init__(self, error: BaseException):
        super().__init__()
        self.error = error

    async def schemas(self) -> list[TableSchema]:
        raise self.error


class RecordingReporter(CompressionReporter):
    def __init__(self):
        self.events: list[tuple] = []

    def compression_started(self, row_count, batch_size):
        self.events.append(("started", row_count, batch_size))

    def compression_progress(self, batch, total_batches, batch_size):
        self.events.append(("progress", batch, total_batches, batch_size))

    def compression_finished(self, ok):
        self.events.append(("finished", ok))


def _replies(*texts):
    replies = list(texts)

    async def llm_call(*, messages, temperature):
        return replies.pop(0)

    return llm_call


def _dispatcher(store, llm_call=None, config=None):
    accumulator = CompressionAccumulator(llm_call or _replies("summary"), config)
    return ToolDispatcher(store, store, accumulator, config)


class TestParseToolArguments:
    def test_blank_text_is_empty_object(self):
        assert parse_tool_arguments(GET_DATABASE_SCHEMA, "") == {}
        assert parse_tool_arguments(GET_DATABASE_SCHEMA, "   ") == {}

    def test_valid_run_sql(self):
        assert parse_tool_arguments(RUN_SQL, '{"query": "SELECT 1"}') == {"query": "SELECT 1"}

    def test_malformed_json(self):
        with pytest.raises(ArgumentParseError) as info:
            parse_tool_arguments(RUN_SQL, '{"query": "SELECT')
        assert info.value.tool_name == RUN_SQL
        assert info.value.raw_arguments == '{"query": "SELECT'

    def test_non_object_json(self):
        with pytest.raises(ArgumentParseError):
            parse_tool_arguments(GET_DATABASE_SCHEMA, "[1, 2]")

    @pytest.mark.parametrize("text", ["{}", '{"query": ""}', '{"query": 42}'])
    def test_run_sql_needs_a_query(self, text):
        with pytest.raises(ArgumentParseError):
            parse_tool_arguments(RUN_SQL, text)


class TestFormatSchema:
    def test_line_with_source(self):
        table = TableSchema(
            table_name="t_1", original_name="sales.xlsx", columns=["city", "amount"], row_count=3
        )
        assert format_schema([table]) == (
            "[Table: t_1 (Source: sales.xlsx), Rows: 3] Columns: city, amount"
        )

    def test_line_without_source(self):
        table = TableSchema(table_name="t_2", columns=["a"], row_count=0)
        assert format_schema([table]) == "[Table: t_2, Rows: 0] Columns: a"

    def test_one_line_per_table(self):
        tables = [TableSchema(table_name=f"t_{i}", columns=["a"]) for i in range(3)]
        assert len(format_schema(tables).splitlines()) == 3


class TestSchemaTool:
    async def test_empty_database(self):
        outcome = await _dispatcher(FakeStore()).dispatch(
            GET_DATABASE_SCHEMA, {}, question="q"
        )
        assert outcome.observation == EMPTY_DATABASE
        assert outcome.result == []
        assert not outcome.is_error

    async def test_real_store_schema(self, sales_store):
        outcome = await _dispatcher(sales_store).dispatch(GET_DATABASE_SCHEMA, {}, question="q")
        assert outcome.observation == (
            "[Table: t_sales (Source: sales.xlsx), Rows: 3] Columns: city, amount, year"
        )
        assert outcome.result[0].samples[0]["city"] == "Beijing"

    async def test_provider_failure_is_observed(self):
        store = BrokenSchemaStore(StoreError("TableStore is not open. Call open() first."))
        outcome = await _dispatcher(store).dispatch(GET_DATABASE_SCHEMA, {}, question="q")
        assert outcome.is_error
        assert outcome.result is None
        assert outcome.observation == (
            "Error: could not read the schema: TableStore is not open. Call open() first."
        )

    async def test_provider_cancellation_propagates(self):
        store = BrokenSchemaStore(AgentCancelledError("cancelled"))
        with pytest.raises(AgentCancelledError):
            await _dispatcher(store).dispatch(GET_DATABASE_SCHEMA, {}, question="q")


class TestRunSqlTool:
    async def test_query_is_sanitized_before_execution(self):
        store = FakeStore(QueryResult())
        await _dispatcher(store).dispatch(
            RUN_SQL, {"query": "SELECT SUM(x) AS 总计 FROM t"}, question="q"
        )
        assert store.executed == ["SELECT SUM(x) AS [总计] FROM t"]

    async def test_engine_error_is_returned_verbatim(self, sales_store):
        outcome = await _dispatcher(sales_store).dispatch(
            RUN_SQL, {"query": "SELECT * FROM t_missing"}, question="q"
        )
        assert outcome.is_error
        assert "no such table" in outcome.observation
        assert outcome.result.error == outcome.observation

    async def test_empty_result_guidance(self, sales_store):
        outcome = await _dispatcher(sales_store).dispatch(
            RUN_SQL,
            {"query": "SELECT * FROM [t_sales] WHERE [city] = 'Paris'"},
            question="q",
        )
        assert outcome.observation == EMPTY_RESULT
        assert outcome.observation.startswith("Query result: [] (0 rows).")
        assert not outcome.is_error

    async def test_rows_are_compressed(self, sales_store):
        reporter = RecordingReporter()
        outcome = await _dispatcher(sales_store, _replies("Total: 60")).dispatch(
            RUN_SQL,
            {"query": "SELECT [city], [amount] FROM [t_sales]"},
            question="Total amount?",
            reporter=reporter,
        )
        assert outcome.observation == f"{COMPRESSED_RESULT_HEADER}\nTotal: 60"
        assert outcome.result.row_count == 3
        batch_size = reporter.events[0][2]
        assert reporter.events == [
            ("started", 3, batch_size),
            ("progress", 1, 1, batch_size),
            ("finished", True),
        ]

    async def test_blank_compression_falls_back_to_raw_preview(self):
        rows = [{"n": str(i)} for i in range(60)]
        store = FakeStore(QueryResult(columns=["n"], rows=rows))
        reporter = RecordingReporter()
        outcome = await _dispatcher(store, _replies("   ")).dispatch(
            RUN_SQL, {"query": "SELECT n FROM t"}, question="q", reporter=reporter
        )
        header, preview = outcome.observation.split("\n", 1)
        assert header == "Query result (compression failed, showing first 50 rows):"
        assert json.loads(preview) == rows[:50]
        assert reporter.events[-1] == ("finished", False)
        assert not outcome.is_error

    async def test_fold_crash_falls_back_to_raw_preview(self):
        class BrokenAccumulator(CompressionAccumulator):
            async def fold(self, rows, **kwargs):
                raise RuntimeError("fold exploded")

        store = FakeStore(QueryResult(columns=["n"], rows=[{"n": "1"}]))
        config = CompressionConfig(fallback_preview_rows=5)
        dispatcher = ToolDispatcher(store, store, BrokenAccumulator(_replies()), config)
        outcome = await dispatcher.dispatch(RUN_SQL, {"query": "SELECT n FROM t"}, question="q")
        assert outcome.observation == (
            'Query result (compression failed, showing first 5 rows):\n[{"n": "1"}]'
        )

    async def test_cancel_during_compression_propagates(self):
        rows = [{"n": str(i)} for i in range(10)]
        store = FakeStore(QueryResult(columns=["n"], rows=rows))
        token = CancellationToken()
        reporter = RecordingReporter()

        async def cancelling_call(*, messages, temperature):
            token.cancel()
            return "partial"

        config = CompressionConfig(min_batch_size=1, max_batch_size=1)
        with pytest.raises(AgentCancelledError):
            await _dispatcher(store, cancelling_call, config).dispatch(
                RUN_SQL, {"query": "SELECT n FROM t"}, question="q", reporter=reporter, cancel=token
            )
        assert reporter.events[-1] == ("finished", False)


class TestDispatch:
    async def test_unknown_tool(self):
        outcome = await _dispatcher(FakeStore()).dispatch("drop_everything", {}, question="q")
        assert outcome.is_error
        assert outcome.observation == "Error: unknown tool 'drop_everything'."

    async def test_cancelled_token_stops_before_running(self):
        store = FakeStore()
        token = CancellationToken()
        token.cancel()
        with pytest.raises(AgentCancelledError):
            await _dispatcher(store).dispatch(
                RUN_SQL, {"query": "SELECT 1"}, question="q", cancel=token
            )
        assert store.executed == []
