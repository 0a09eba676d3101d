"""
Query engine and schema provider interfaces.

The agent loop only ever needs two things from a data backend: run one SQL
string and describe the available tables. Any backend that implements both
can be handed to :class:`sqlpilot.session.AgentSession`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlpilot.models.message import QueryResult, TableSchema


class QueryEngine(ABC):
    """Executes model-authored SQL."""

    @abstractmethod
    async def execute(self, sql: str) -> QueryResult:
        """
        Run *sql* and return its rows.

        Engine errors must not raise: they are reported through
        ``QueryResult.error`` so the model can read and correct them.
        """
        pass  # pragma: no cover - abstract method


class SchemaProvider(ABC):
    """Describes the tables a :class:`QueryEngine` can see."""

    @abstractmethod
    async def schemas(self) -> list[TableSchema]:
        """Return one :class:`TableSchema` per table, with up to three sample rows."""
        pass  # pragma: no cover - abstract method


class DataStore(QueryEngine, SchemaProvider):
    """A backend that both runs SQL and describes its own tables."""
