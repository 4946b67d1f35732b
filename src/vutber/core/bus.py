"""
Asyncio-based broadcast hub that fans events out to connected listeners.

Each subscriber owns a bounded queue. Publishing is synchronous and never
waits: a subscriber whose queue is full is disconnected instead of slowing
down the publisher or the other subscribers. There is no history, so a
subscriber only sees events published after it registered.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import itertools
import logging
from collections.abc import AsyncIterator

from .contracts import BaseEvent, BusStatus

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscriber:
    """
    Async-iterable handle for one listener.

    Iteration yields events in publish order and ends once the bus closes
    the subscriber. Leaving the iteration early unregisters it.
    """

    def __init__(self, bus: EventBus, subscriber_id: int, queue_size: int) -> None:
        self.id = subscriber_id
        self.connected_at = dt.datetime.now(tz=dt.UTC)
        self._bus = bus
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, event: BaseEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A full queue has no blocked reader; `get` ends the stream once it drains.
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_CLOSED)

    async def get(self) -> BaseEvent | None:
        """Return the next event, or ``None`` once the subscriber was closed."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[BaseEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BaseEvent]:
        try:
            while True:
                event = await self.get()
                if event is None:
                    return
                yield event
        finally:
            self._bus.unsubscribe(self)


class EventBus:
    """
    Broadcast hub shared by the boundary, the orchestrator and the live session.

    All mutations run synchronously on the event loop thread, so subscribe,
    publish and disconnect never interleave mid-update.
    """

    def __init__(self, *, queue_size: int = 256) -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be positive")
        self._queue_size = queue_size
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._closed = False
        self._published_total = 0
        self._delivered_total = 0
        self._dropped_total = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscriber:
        """Register a new listener that observes events published from now on."""
        subscriber = Subscriber(self, next(self._ids), self._queue_size)
        if self._closed:
            subscriber._close()
            return subscriber
        self._subscribers[subscriber.id] = subscriber
        logger.debug("Subscriber %d connected (%d total)", subscriber.id, len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Detach a subscriber; unknown or already removed subscribers are ignored."""
        removed = self._subscribers.pop(subscriber.id, None)
        subscriber._close()
        if removed is not None:
            logger.debug(
                "Subscriber %d disconnected (%d remaining)",
                subscriber.id,
                len(self._subscribers),
            )

    def publish(self, event: BaseEvent) -> int:
        """
        Deliver an event to every current subscriber without blocking.

        Returns the number of subscribers that received the event.
        """
        self._published_total += 1
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if subscriber._offer(event):
                delivered += 1
                continue
            self._dropped_total += 1
            logger.warning(
                "Subscriber %d queue is full; disconnecting slow listener.", subscriber.id
            )
            self.unsubscribe(subscriber)
        self._delivered_total += delivered
        logger.debug(
            "Published %s %s to %d subscribers", type(event).__name__, event.event_id, delivered
        )
        return delivered

    def close(self) -> None:
        """End every subscriber stream; later subscribers are closed immediately."""
        if self._closed:
            return
        self._closed = True
        for subscriber in list(self._subscribers.values()):
            self.unsubscribe(subscriber)
        logger.info("Event bus closed.")

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def stats(self) -> BusStatus:
        return BusStatus(
            subscriber_count=len(self._subscribers),
            published_total=self._published_total,
            delivered_total=self._delivered_total,
            dropped_subscribers_total=self._dropped_total,
        )


__all__ = ["EventBus", "Subscriber"]
