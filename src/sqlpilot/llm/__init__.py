"""Model transport."""

from sqlpilot.llm.client import MOCK_ENV_VAR, ChatModel, LLMClient, RateLimiter, mock_enabled

__all__ = ["MOCK_ENV_VAR", "ChatModel", "LLMClient", "RateLimiter", "mock_enabled"]
