"""sqlpilot data models."""

from sqlpilot.models.config import (
    AgentConfig,
    CompressionConfig,
    LLMSettings,
    SqlPilotConfig,
)
from sqlpilot.models.message import (
    AgentStep,
    CompressionResult,
    ConversationMessage,
    QueryResult,
    RunResult,
    StepKind,
    StepStatus,
    TableSchema,
    ToolCall,
)

__all__ = [
    # Config
    "AgentConfig",
    "CompressionConfig",
    "LLMSettings",
    "SqlPilotConfig",
    # Conversation
    "ConversationMessage",
    "ToolCall",
    # Steps
    "AgentStep",
    "StepKind",
    "StepStatus",
    # Tabular
    "QueryResult",
    "TableSchema",
    # Results
    "CompressionResult",
    "RunResult",
]
