"""
sqlpilot: a ReAct agent that answers questions about tabular data with SQL.

Primary entry point::

    from sqlpilot import AgentSession, LLMSettings, TableStore

    async with TableStore() as store:
        await store.register_table("t_sales", rows, original_name="sales.xlsx")
        session = AgentSession(store, LLMSettings.from_env())
        result = await session.run("Which region sold the most?")
        print(result.final_answer)
"""

from sqlpilot.session import AgentSession, make_id, run_agent
from sqlpilot.models import (
    AgentConfig,
    AgentStep,
    CompressionConfig,
    CompressionResult,
    ConversationMessage,
    LLMSettings,
    QueryResult,
    RunResult,
    SqlPilotConfig,
    TableSchema,
    ToolCall,
)
from sqlpilot.errors import (
    AgentCancelledError,
    ArgumentParseError,
    CancellationToken,
    CompressionError,
    ConfigurationError,
    SqlPilotError,
    StepStateError,
    StoreError,
    TransportError,
)
from sqlpilot.events.bus import AgentEvent, EventBus
from sqlpilot.llm.client import ChatModel, LLMClient
from sqlpilot.store import DataStore, QueryEngine, SchemaProvider, TableStore, new_table_id
from sqlpilot.compression import CompressionAccumulator, adaptive_batch_size
from sqlpilot.sql import sanitize_sql
from sqlpilot.tools import ToolDispatcher, detect_manual_tool_call

__version__ = "0.1.0"

__all__ = [
    # Core
    "AgentSession",
    "run_agent",
    "make_id",
    # Config
    "AgentConfig",
    "CompressionConfig",
    "LLMSettings",
    "SqlPilotConfig",
    # Models
    "AgentStep",
    "CompressionResult",
    "ConversationMessage",
    "QueryResult",
    "RunResult",
    "TableSchema",
    "ToolCall",
    # Errors
    "SqlPilotError",
    "AgentCancelledError",
    "ArgumentParseError",
    "CompressionError",
    "ConfigurationError",
    "StepStateError",
    "StoreError",
    "TransportError",
    "CancellationToken",
    # Events
    "AgentEvent",
    "EventBus",
    # Model transport
    "ChatModel",
    "LLMClient",
    # Data
    "DataStore",
    "QueryEngine",
    "SchemaProvider",
    "TableStore",
    "new_table_id",
    # Components
    "CompressionAccumulator",
    "ToolDispatcher",
    "adaptive_batch_size",
    "detect_manual_tool_call",
    "sanitize_sql",
]
