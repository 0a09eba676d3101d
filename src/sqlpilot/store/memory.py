"""
In-memory SQLite table store.

``TableStore`` owns a private ``aiosqlite`` connection to ``:memory:`` and
implements :class:`~sqlpilot.store.base.DataStore` (query engine plus schema
provider). Every column is stored as
``TEXT``; the model is instructed to ``CAST`` before doing arithmetic.

Model SQL runs read-only: only ``SELECT`` and ``WITH`` statements are
accepted, and the connection keeps ``PRAGMA query_only`` on except while the
store itself registers or drops a table.

Usage::

    async with TableStore() as store:
        table_id = new_table_id()
        await store.register_table(table_id, rows, original_name="sales_2021.xlsx")
        result = await store.execute(f"SELECT COUNT(*) AS n FROM [{table_id}]")
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import aiosqlite
import structlog
from ulid import ULID

from sqlpilot.errors import StoreError
from sqlpilot.models.message import QueryResult, TableSchema
from sqlpilot.sql.sanitizer import TokenKind, tokenize_sql
from sqlpilot.store.base import DataStore

SAMPLE_ROWS = 3

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_READ_KEYWORDS = frozenset({"SELECT", "WITH"})


def new_table_id() -> str:
    """Return a fresh safe SQL table identifier such as ``t_01j9...``."""
    return f"t_{str(ULID()).lower()}"


def is_visible_column(name: str) -> bool:
    """Blank and underscore-prefixed columns are bookkeeping, never shown to the model."""
    return bool(name) and not name.startswith("_")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _infer_columns(rows: Iterable[Mapping[str, Any]]) -> list[str]:
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(str(key), None)
    return [name for name in seen if is_visible_column(name)]


@dataclass
class _TableEntry:
    original_name: str | None
    columns: list[str]


class TableStore(DataStore):
    """
    Register row sets as SQLite tables and run model SQL against them.

    The connection is private and single-task; the agent loop never issues
    concurrent queries, so no write lock is needed.
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._tables: dict[str, _TableEntry] = {}
        self._logger = logger or structlog.get_logger("sqlpilot.store")

    async def __aenter__(self) -> TableStore:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def open(self) -> None:
        """Open the in-memory connection. Idempotent."""
        if self._conn is not None:
            return
        conn = await aiosqlite.connect(":memory:")
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA query_only = ON")
        self._conn = conn
        self._logger.debug("store_opened")

    async def close(self) -> None:
        """Close the connection; all registered tables are discarded."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        self._tables.clear()
        self._logger.debug("store_closed")

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("TableStore is not open. Call open() first.")
        return self._conn

    @asynccontextmanager
    async def _writable(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self._conn_or_raise()
        await conn.execute("PRAGMA query_only = OFF")
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            await conn.execute("PRAGMA query_only = ON")

    # ── Registration ───────────────────────────────────────────────────────────

    async def register_table(
        self,
        name: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        original_name: str | None = None,
        columns: Sequence[str] | None = None,
    ) -> TableSchema:
        """
        Create (or replace) table *name* holding *rows*.

        Args:
            name: Safe SQL identifier, e.g. from :func:`new_table_id`.
            rows: Row mappings. Missing keys become NULL.
            original_name: Human-readable source label shown in the schema.
            columns: Column order. Defaults to the keys of *rows* in first-seen
                order. Blank and ``_``-prefixed columns are always dropped.

        Raises:
            StoreError: If *name* is not a safe identifier or no columns remain.
        """
        if not _TABLE_NAME.match(name):
            raise StoreError(f"Table name {name!r} is not a safe SQL identifier")
        cols = [c for c in columns if is_visible_column(c)] if columns else _infer_columns(rows)
        if not cols:
            raise StoreError(f"Table {name!r} has no usable columns")

        column_ddl = ", ".join(f"{_quote(c)} TEXT" for c in cols)
        placeholders = ", ".join("?" for _ in cols)
        async with self._writable() as conn:
            await conn.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
            await conn.execute(f"CREATE TABLE {_quote(name)} ({column_ddl})")
            await conn.executemany(
                f"INSERT INTO {_quote(name)} VALUES ({placeholders})",
                [tuple(_to_text(row.get(c)) for c in cols) for row in rows],
            )

        self._tables[name] = _TableEntry(original_name=original_name, columns=cols)
        self._logger.info(
            "table_registered", table=name, source=original_name, rows=len(rows), columns=len(cols)
        )
        return await self._describe(name)

    async def drop_table(self, name: str) -> None:
        """Remove *name*. No-op if it was never registered."""
        if name not in self._tables:
            return
        async with self._writable() as conn:
            await conn.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
        del self._tables[name]

    async def clear(self) -> None:
        """Drop every registered table."""
        for name in list(self._tables):
            await self.drop_table(name)

    def table_names(self) -> list[str]:
        return list(self._tables)

    # ── QueryEngine / SchemaProvider ───────────────────────────────────────────

    async def execute(self, sql: str) -> QueryResult:
        conn = self._conn_or_raise()
        keyword = _leading_keyword(sql)
        if keyword not in _READ_KEYWORDS:
            self._logger.warning("query_rejected", keyword=keyword)
            shown = keyword or "an empty statement"
            return QueryResult.failure(f"Only read-only SELECT queries are allowed, got {shown}.")
        try:
            async with conn.execute(sql) as cursor:
                fetched = await cursor.fetchall()
                description = cursor.description or ()
        except (aiosqlite.Error, aiosqlite.Warning) as exc:
            self._logger.info("query_failed", error=str(exc))
            return QueryResult.failure(str(exc))

        columns = [d[0] for d in description if is_visible_column(d[0])]
        rows = [{c: row[c] for c in columns} for row in fetched]
        self._logger.debug("query_executed", rows=len(rows), columns=len(columns))
        return QueryResult(columns=columns, rows=rows)

    async def schemas(self) -> list[TableSchema]:
        return [await self._describe(name) for name in self._tables]

    async def _describe(self, name: str) -> TableSchema:
        conn = self._conn_or_raise()
        entry = self._tables[name]
        async with conn.execute(f"SELECT COUNT(*) FROM {_quote(name)}") as cursor:
            count_row = await cursor.fetchone()
        async with conn.execute(f"SELECT * FROM {_quote(name)} LIMIT {SAMPLE_ROWS}") as cursor:
            samples = [dict(row) for row in await cursor.fetchall()]
        return TableSchema(
            table_name=name,
            original_name=entry.original_name,
            columns=list(entry.columns),
            row_count=count_row[0] if count_row else 0,
            samples=samples,
        )


def _leading_keyword(sql: str) -> str:
    for token in tokenize_sql(sql):
        if token.kind in (TokenKind.SPACE, TokenKind.COMMENT):
            continue
        return token.text.upper() if token.kind is TokenKind.WORD else token.text
    return ""
