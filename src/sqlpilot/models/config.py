"""Configuration models for sqlpilot sessions and components."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, model_validator


class LLMSettings(BaseModel):
    """
    Credential and transport settings for the model completion API.

    ``model`` uses the litellm model string format, e.g. ``"gpt-4o-mini"`` or
    ``"openai/qwen-flash"`` together with an OpenAI-compatible ``base_url``.
    """

    api_key: str = ""
    """Provider API key. An empty key fails the session before any iteration."""

    base_url: str | None = Field(
        default=None,
        description="OpenAI-compatible endpoint. None = provider default.",
    )

    model: str = "gpt-4o-mini"

    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for the agent loop. Keep low for SQL generation.",
    )

    request_timeout: float = Field(default=120.0, gt=0.0)
    """Seconds before a single model request is abandoned."""

    requests_per_minute: int | None = Field(
        default=None,
        ge=1,
        description="Upper bound on model requests per minute. None = unlimited.",
    )

    @classmethod
    def from_env(cls, **overrides: object) -> LLMSettings:
        """
        Build settings from ``SQLPILOT_API_KEY``, ``SQLPILOT_BASE_URL`` and
        ``SQLPILOT_MODEL``. Keyword overrides win over the environment.
        """
        values: dict[str, object] = {}
        if api_key := os.environ.get("SQLPILOT_API_KEY"):
            values["api_key"] = api_key
        if base_url := os.environ.get("SQLPILOT_BASE_URL"):
            values["base_url"] = base_url
        if model := os.environ.get("SQLPILOT_MODEL"):
            values["model"] = model
        values.update(overrides)
        return cls.model_validate(values)


class AgentConfig(BaseModel):
    """Configuration for the agent loop controller."""

    max_iterations: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Hard cap on model turns per question.",
    )

    doom_loop_threshold: int = Field(
        default=3,
        ge=2,
        le=10,
        description="Number of consecutive identical tool calls that triggers doom loop detection.",
    )


class CompressionConfig(BaseModel):
    """
    Constants of the adaptive batching model and the compression fold.

    The composite complexity is
    ``C = w_fields * C_f + w_length * C_l + w_type * C_t`` with
    ``C_t = alpha * R_text + beta * R_long``; the batch size is
    ``floor(max_batch_size - (max_batch_size - min_batch_size) * C)``.
    """

    min_batch_size: int = Field(default=5, ge=1)
    max_batch_size: int = Field(default=100, ge=1)
    default_batch_size: int = Field(
        default=10,
        ge=1,
        description="Batch size returned for an empty result set.",
    )
    sample_rows: int = Field(default=20, ge=1)

    field_norm: float = Field(default=40.0, gt=0.0)
    """Average field count at which field complexity saturates."""
    length_norm: float = Field(default=4000.0, gt=0.0)
    """Average serialized row length at which length complexity saturates."""
    long_text_threshold: int = Field(default=256, ge=1)

    field_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    length_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    type_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    text_alpha: float = Field(default=0.5, ge=0.0, le=1.0)
    long_text_beta: float = Field(default=0.5, ge=0.0, le=1.0)

    fallback_preview_rows: int = Field(
        default=50,
        ge=1,
        description="Raw rows shown to the model when compression fails outright.",
    )
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)

    @model_validator(mode="after")
    def validate_model_constants(self) -> CompressionConfig:
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size must not exceed max_batch_size")
        weights = self.field_weight + self.length_weight + self.type_weight
        if abs(weights - 1.0) > 1e-6:
            raise ValueError("field_weight + length_weight + type_weight must sum to 1.0")
        if abs(self.text_alpha + self.long_text_beta - 1.0) > 1e-6:
            raise ValueError("text_alpha + long_text_beta must sum to 1.0")
        return self


class SqlPilotConfig(BaseModel):
    """
    Top-level configuration for a sqlpilot session.

    Example::

        config = SqlPilotConfig(
            agent=AgentConfig(max_iterations=20),
            compression=CompressionConfig(max_batch_size=60),
        )
    """

    agent: AgentConfig = Field(default_factory=AgentConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)

    @classmethod
    def default(cls) -> SqlPilotConfig:
        """Return a config instance with all defaults."""
        return cls()
