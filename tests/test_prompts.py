"""Tests for prompt rendering."""

from __future__ import annotations

from datetime import date

import pytest
from jinja2 import UndefinedError

from sqlpilot.prompts import COMPRESSION_PROMPT, SYSTEM_PROMPT, render, system_prompt


class TestPrompts:
    def test_system_prompt_carries_date(self):
        text = system_prompt(date(2024, 3, 9))
        assert text.rstrip().endswith("Current date: 2024-03-09")
        assert "get_database_schema" in text
        assert "UNION ALL" in text

    def test_system_prompt_defaults_to_today(self):
        assert date.today().isoformat() in system_prompt()

    def test_missing_variable_raises(self):
        with pytest.raises(UndefinedError):
            render(SYSTEM_PROMPT)

    def test_compression_prompt_is_not_html_escaped(self):
        text = render(
            COMPRESSION_PROMPT,
            question="Sales > 10 & rising?",
            sql="SELECT * FROM t WHERE a < 3",
            previous="none",
            batch_index=2,
            total_batches=4,
            batch_json='[{"a": "<b>"}]',
        )
        assert 'User question: "Sales > 10 & rising?"' in text
        assert "WHERE a < 3" in text
        assert '[{"a": "<b>"}]' in text
        assert "(2/4)" in text
