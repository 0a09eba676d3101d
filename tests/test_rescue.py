"""Tests for recovering tool calls written as plain text."""

from __future__ import annotations

import json

from sqlpilot.tools.definitions import GET_DATABASE_SCHEMA, RUN_SQL
from sqlpilot.tools.rescue import detect_manual_tool_call


class TestRunSqlRescue:
    def test_double_quoted(self):
        call = detect_manual_tool_call('I will now run_sql("SELECT COUNT(*) FROM t_1")')
        assert call is not None
        assert call.name == RUN_SQL
        assert json.loads(call.arguments) == {"query": "SELECT COUNT(*) FROM t_1"}
        assert call.id.startswith("manual_")

    def test_single_quoted_with_spacing(self):
        call = detect_manual_tool_call("run_sql ( 'SELECT 1' )")
        assert json.loads(call.arguments) == {"query": "SELECT 1"}

    def test_backtick_multiline(self):
        text = "Next step:\nrun_sql(`SELECT [城市]\nFROM t_1`)"
        call = detect_manual_tool_call(text)
        assert call.name == RUN_SQL
        assert json.loads(call.arguments) == {"query": "SELECT [城市]\nFROM t_1"}
        assert "城市" in call.arguments

    def test_run_sql_wins_over_schema(self):
        call = detect_manual_tool_call('call get_database_schema() then run_sql("SELECT 1")')
        assert call.name == RUN_SQL

    def test_ids_are_unique(self):
        first = detect_manual_tool_call('run_sql("SELECT 1")')
        second = detect_manual_tool_call('run_sql("SELECT 1")')
        assert first.id != second.id


class TestSchemaRescue:
    def test_parenthesised_call(self):
        call = detect_manual_tool_call("get_database_schema()")
        assert call.name == GET_DATABASE_SCHEMA
        assert call.arguments == "{}"

    def test_mentioned_with_call(self):
        call = detect_manual_tool_call("I should Call get_database_schema first.")
        assert call.name == GET_DATABASE_SCHEMA

    def test_bare_mention_is_not_rescued(self):
        assert detect_manual_tool_call("The get_database_schema tool lists tables.") is None


class TestNoRescue:
    def test_plain_answer(self):
        assert detect_manual_tool_call("Beijing has the highest total of 30.") is None

    def test_empty_text(self):
        assert detect_manual_tool_call("") is None

    def test_run_sql_without_quoted_argument(self):
        assert detect_manual_tool_call("You could use run_sql(query) here.") is None
