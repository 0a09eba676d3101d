"""Error taxonomy and cooperative cancellation for sqlpilot sessions.

Only :class:`ConfigurationError` and :class:`TransportError` are fatal to a
session. Tool-scoped failures (bad arguments, SQL errors, empty results,
compression failures) are turned into observation text the model can react to.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class SqlPilotError(Exception):
    """Base class for all sqlpilot errors."""


class ConfigurationError(SqlPilotError):
    """Raised before any iteration runs when the credential bundle is missing."""


class TransportError(SqlPilotError):
    """A model call failed (network, auth, rate limit). Terminates the session."""

    def __init__(self, message: str, *, model: str | None = None) -> None:
        super().__init__(message)
        self.model = model


class ArgumentParseError(SqlPilotError):
    """Tool-call argument text is not a valid JSON object for the named tool."""

    def __init__(self, tool_name: str, raw_arguments: str, reason: str) -> None:
        super().__init__(f"Invalid arguments for {tool_name!r}: {reason}")
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments
        self.reason = reason


class CompressionError(SqlPilotError):
    """The compression fold could not produce a usable summary."""


class StepStateError(SqlPilotError):
    """An illegal transition was attempted on the agent step log."""


class StoreError(SqlPilotError):
    """The table store was used before open() or given an unusable table definition."""


class AgentCancelledError(SqlPilotError):
    """The session's cancellation token fired at a suspension point."""


class CancellationToken:
    """
    Cooperative cancellation flag shared between a caller and one session.

    The session checks the token before each iteration, at every streamed
    delta, before each tool dispatch and before every compression batch.

    Example::

        token = CancellationToken()
        task = asyncio.create_task(session.run("How many rows?", cancel=token))
        ...
        token.cancel()
        result = await task  # result.status == "cancelled"
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`AgentCancelledError` if cancellation was requested."""
        if self._event.is_set():
            raise AgentCancelledError("Session cancelled by caller")

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()


def check_cancelled(token: CancellationToken | None) -> None:
    """Raise if *token* is set; no-op when no token was supplied."""
    if token is not None:
        token.raise_if_cancelled()


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """
    Await *awaitable*, abandoning it as soon as *token* fires.

    The in-flight work is cancelled (not merely ignored) before
    :class:`AgentCancelledError` is raised.
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise AgentCancelledError("Session cancelled by caller")
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if work.done():
        return work.result()
    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    raise AgentCancelledError("Session cancelled by caller")
