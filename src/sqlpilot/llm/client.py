"""Model transport: streaming tool-calling turns and plain completions via litellm.

Set ``SQLPILOT_MOCK_LLM=1`` to run without credentials or network. The mock
asks for the schema on its first turn, counts the rows of the first table on
its second, and then answers from the last observation.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from typing import Any

import structlog

from sqlpilot.errors import TransportError
from sqlpilot.models.config import LLMSettings
from sqlpilot.streaming.parser import StreamDelta, ToolCallDelta
from sqlpilot.tools.definitions import GET_DATABASE_SCHEMA, RUN_SQL

MOCK_ENV_VAR = "SQLPILOT_MOCK_LLM"

_SCHEMA_TABLE = re.compile(r"\[Table: (\w+)")


def mock_enabled() -> bool:
    return os.environ.get(MOCK_ENV_VAR) == "1"


class ChatModel(ABC):
    """What the agent loop needs from a model backend."""

    @property
    def requires_credentials(self) -> bool:
        """Whether the session must refuse to start without an API key."""
        return True

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> AsyncGenerator[StreamDelta, None]:
        """Yield the deltas of one tool-calling turn, in arrival order."""

    @abstractmethod
    async def complete(
        self, *, messages: list[dict[str, Any]], temperature: float | None = None
    ) -> str:
        """Return the text of one non-streaming completion."""


class RateLimiter:
    """
    Enforce a minimum interval between requests.

    ``None`` means unlimited; :meth:`acquire` then returns immediately.
    """

    def __init__(self, requests_per_minute: int | None = None) -> None:
        self._interval = 60.0 / requests_per_minute if requests_per_minute else 0.0
        self._next_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    async def acquire(self) -> None:
        if not self._interval:
            return
        async with self._lock:
            wait = self._next_at - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_at = time.monotonic() + self._interval


class LLMClient(ChatModel):
    """
    litellm-backed :class:`ChatModel`.

    Every provider failure is re-raised as :class:`TransportError`, which is
    fatal to the session that issued the call.

    Args:
        settings: Credentials, endpoint, model and sampling settings.
        mock: Force mock mode on or off. Defaults to ``SQLPILOT_MOCK_LLM``.
        logger: Bound structlog logger; defaults to ``sqlpilot.llm``.
    """

    def __init__(
        self,
        settings: LLMSettings,
        *,
        mock: bool | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._settings = settings
        self._mock = mock_enabled() if mock is None else mock
        self._limiter = RateLimiter(settings.requests_per_minute)
        self._logger = logger or structlog.get_logger("sqlpilot.llm")

    @property
    def model(self) -> str:
        return self._settings.model

    @property
    def is_mock(self) -> bool:
        return self._mock

    @property
    def requires_credentials(self) -> bool:
        return not self._mock

    def _request_kwargs(
        self, messages: list[dict[str, Any]], temperature: float | None
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": self._settings.temperature if temperature is None else temperature,
            "api_key": self._settings.api_key,
            "timeout": self._settings.request_timeout,
        }
        if self._settings.base_url:
            kwargs["api_base"] = self._settings.base_url
        return kwargs

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> AsyncGenerator[StreamDelta, None]:
        if self._mock:
            for delta in _mock_turn(messages):
                yield delta
            return

        import litellm

        kwargs = self._request_kwargs(messages, temperature)
        kwargs["stream"] = True
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        await self._limiter.acquire()
        self._logger.debug("llm_stream_opened", model=self._settings.model, messages=len(messages))
        try:
            response = await litellm.acompletion(**kwargs)
            async for chunk in response:
                delta = StreamDelta.from_chunk(chunk)
                if delta is not None:
                    yield delta
        except Exception as exc:
            self._logger.error("llm_stream_failed", model=self._settings.model, error=str(exc))
            raise TransportError(str(exc), model=self._settings.model) from exc

    async def complete(
        self, *, messages: list[dict[str, Any]], temperature: float | None = None
    ) -> str:
        if self._mock:
            return _mock_completion(messages)

        import litellm

        await self._limiter.acquire()
        try:
            response = await litellm.acompletion(**self._request_kwargs(messages, temperature))
        except Exception as exc:
            self._logger.warning(
                "llm_completion_failed", model=self._settings.model, error=str(exc)
            )
            raise TransportError(str(exc), model=self._settings.model) from exc
        return response.choices[0].message.content or ""


# ── Mock mode ─────────────────────────────────────────────────────────────────


def _mock_tool_call(name: str, arguments: str) -> list[StreamDelta]:
    # Split like a real provider: id and name first, arguments in two pieces.
    half = len(arguments) // 2
    return [
        StreamDelta(tool_calls=(ToolCallDelta(index=0, id="call_mock_0", name=name),)),
        StreamDelta(tool_calls=(ToolCallDelta(index=0, arguments=arguments[:half]),)),
        StreamDelta(tool_calls=(ToolCallDelta(index=0, arguments=arguments[half:]),)),
    ]


def _mock_turn(messages: list[dict[str, Any]]) -> list[StreamDelta]:
    tool_messages = [m for m in messages if m.get("role") == "tool"]
    if not tool_messages:
        return [
            StreamDelta(content="Let me inspect the schema first."),
            *_mock_tool_call(GET_DATABASE_SCHEMA, "{}"),
        ]

    last = tool_messages[-1]
    content = str(last.get("content") or "")
    if last.get("name") == GET_DATABASE_SCHEMA:
        match = _SCHEMA_TABLE.search(content)
        if match:
            query = f'{{"query": "SELECT COUNT(*) AS row_count FROM [{match.group(1)}]"}}'
            return [
                StreamDelta(content="Counting the rows of the first table."),
                *_mock_tool_call(RUN_SQL, query),
            ]

    answer = f"[Mock answer] Based on the last observation:\n{content[:300]}"
    return [StreamDelta(content=word) for word in re.split(r"(?<=\s)", answer) if word]


def _mock_completion(messages: list[dict[str, Any]]) -> str:
    prompt = str(messages[-1].get("content") or "") if messages else ""
    return f"[Mock summary] folded {len(prompt)} prompt characters into this summary."
