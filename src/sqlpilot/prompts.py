"""Prompt templates and canned observation texts.

Templates are Jinja2 strings rendered with :func:`render`. Keep wording changes
here so the loop, dispatcher and accumulator stay free of prose.
"""

from __future__ import annotations

from datetime import date
from functools import cache
from typing import Any

from jinja2 import StrictUndefined, Template

SYSTEM_PROMPT = """\
# Role & Objective
You are an expert data-analysis ReAct agent, fluent in SQL generation and
business insight. Answer the user's business question by calling tools,
writing precise SQL, and analysing the results.

# Context & Environment
1. Table naming:
   - Tables use system-generated SQL ids such as `t_12345`.
   - Map business concepts ("the 2020 sheet") onto SQL ids through the
     `Source` label returned by `get_database_schema`.
   - Never use a source file name as a table name; always query
     `SELECT ... FROM [t_12345]`.
   - Spaces and special characters in column names were replaced with `_`.
   - Every value is stored as text; convert explicitly before doing arithmetic.
2. Responsibilities:
   - Knowledge discovery: understand the whole schema, recognise tables split
     by period (e.g. one table per year) and use the `Source` label to tell
     them apart.
   - Text-to-code: translate natural language into SQLite-compatible SQL.
   - Insight: do not just list data; draw business conclusions from it.

# Example
User: "Total direct economic loss in Beijing for 2020 and 2021"
Thought: `t_89ab` is Source 2020.xlsx and `t_cdef` is Source 2021.xlsx;
"Beijing" needs `LIKE '%Beijing%'`; combine both tables with `UNION ALL`.
SQL:
```sql
SELECT SUM(CAST([direct_loss] AS DECIMAL)) AS total_loss
FROM (
    SELECT [direct_loss] FROM t_89ab WHERE [region] LIKE '%Beijing%'
    UNION ALL
    SELECT [direct_loss] FROM t_cdef WHERE [region] LIKE '%Beijing%'
) AS combined_table
```

# SQL Generation Rules
1. Schema first: call `get_database_schema` before writing any query. When
   several tables differ only by period in their `Source`, cover all of them
   with `UNION ALL`.
2. Always reference tables by SQL id in FROM clauses.
3. Wrap every column name in square brackets, e.g. `SELECT [region]`.
4. Filter text columns with `LIKE '%keyword%'` rather than `=`.
5. `CAST(... AS DECIMAL)` before SUM/AVG or numeric ordering.
6. Column aliases after `AS` may only use ASCII letters, digits and
   underscore (e.g. `AS total_count`).

# Answer
- If a query returns no rows, run a partial verification query (drop the
  WHERE conditions) to tell missing data from over-strict filters.
- The final answer contains the direct answer (numbers or lists), the trend
  you infer from the data, and any anomalies you found.

# Workflow
User input -> Thought (schema mapping and strategy) -> Action (SQL) ->
Observation (data) -> Final answer (business insight).

Current date: {{ today }}
"""

COMPRESSION_PROMPT = """\
You are a data analyst and data-compression engine. Query results arrive in
batches; using the user's question, extract the essential data and compute
business insights.

Task context:
- User question: "{{ question }}"
- Executed SQL: "{{ sql }}"
- Accumulated result so far (previous context):
\"\"\"
{{ previous }}
\"\"\"

New data batch ({{ batch_index }}/{{ total_batches }}):
\"\"\"
{{ batch_json }}
\"\"\"

Instructions: decide which mode the question needs and output the updated,
COMPLETE accumulated result.

Mode A - detail extraction
- When: the user asks for lists, record details or specific rows.
- Action: extract the key fields from the new batch (format "field: value")
  and add them to the result, summarising long text.

Mode B - calculation and insight
- When: the user asks for statistics (sums, averages, trends, extremes).
- Action: update the aggregates with the new batch (e.g. previous Sum=100,
  batch Sum=50 -> Sum=150) and note anomalies, notable trends or
  distribution features.

Output rules:
1. Output only the final plain text; it replaces the previous accumulated
   result entirely.
2. Use a clear "field: value" layout.
3. Keep the business meaning of the numbers, not just the numbers.
"""

NO_PRIOR_CONTEXT = "(none yet, this is the first batch)"

EMPTY_DATABASE = (
    "The database is empty. Ask the user to load a spreadsheet or table "
    "before querying."
)

EMPTY_RESULT = """\
Query result: [] (0 rows).
The result is EMPTY. Do not treat this as an answer.
1. Check whether the WHERE conditions are too strict; try OR instead of AND.
2. Make sure you used LIKE '%...%' rather than =.
3. Run a partial verification query with the conditions removed to check whether the data exists."""

INVALID_ARGUMENTS = "Error: Invalid JSON arguments provided for tool call."

COMPRESSED_RESULT_HEADER = "Query result (analysed and compressed):"

RAW_PREVIEW_HEADER = "Query result (compression failed, showing first {limit} rows):"


@cache
def _template(source: str) -> Template:
    return Template(source, undefined=StrictUndefined, keep_trailing_newline=True)


def render(source: str, **context: Any) -> str:
    """Render a template string; undefined variables raise."""
    return _template(source).render(**context)


def system_prompt(today: date | None = None) -> str:
    return render(SYSTEM_PROMPT, today=(today or date.today()).isoformat())
