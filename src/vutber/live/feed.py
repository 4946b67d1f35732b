"""
Abstractions shared by live feed implementations and the session manager.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class LiveFeedError(RuntimeError):
    """Raised when the external live feed cannot be reached or misbehaves."""


class LiveCancelled(Exception):
    """Raised inside the listening task once its token was cancelled."""


class CancellationToken:
    """
    One-shot cancellation signal observed by the listening task.

    `race` wraps each blocking call so a cancel request interrupts it
    promptly instead of waiting for the next message.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first, then raise `LiveCancelled`."""
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise LiveCancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _pending = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise LiveCancelled()


@dataclass(frozen=True)
class LiveMessage:
    """One message pushed by the live platform."""

    cmd: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LiveSessionInfo:
    """Details returned by the platform once a session is open."""

    game_id: str
    room_id: int | None = None
    anchor_name: str | None = None
    anchor_open_id: str | None = None


class LiveFeed(Protocol):
    """Connection to an external live-stream chat feed."""

    async def connect(self) -> LiveSessionInfo:
        """Open the session; raise `LiveFeedError` on failure."""
        ...

    async def receive(self) -> LiveMessage | None:
        """Return the next message, or ``None`` once the feed disconnected."""
        ...

    async def close(self) -> None:
        """Release the connection; safe to call more than once."""
        ...


LiveFeedFactory = Callable[[], LiveFeed]


__all__ = [
    "CancellationToken",
    "LiveCancelled",
    "LiveFeed",
    "LiveFeedError",
    "LiveFeedFactory",
    "LiveMessage",
    "LiveSessionInfo",
]
