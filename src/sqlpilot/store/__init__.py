"""Query engines and schema providers."""

from sqlpilot.store.base import DataStore, QueryEngine, SchemaProvider
from sqlpilot.store.memory import TableStore, new_table_id

__all__ = ["DataStore", "QueryEngine", "SchemaProvider", "TableStore", "new_table_id"]
