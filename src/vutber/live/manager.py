"""
Lifecycle owner for the single background live-listening session.

State moves ``IDLE -> STARTING -> ACTIVE -> STOPPING -> IDLE`` under one
`asyncio.Lock`. The listening task watches a `CancellationToken` at every
blocking point and always closes the feed before the state returns to IDLE.
Whichever path moves the state to STOPPING (an explicit stop or a natural
disconnect) publishes the single `live.stopped` event.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import logging
from collections.abc import Callable

from ..core.bus import EventBus
from ..core.contracts import (
    ErrorEvent,
    ErrorType,
    LiveFeedEvent,
    LiveSessionSnapshot,
    LiveStartedEvent,
    LiveState,
    LiveStoppedEvent,
    Origin,
)
from .feed import (
    CancellationToken,
    LiveCancelled,
    LiveFeed,
    LiveFeedFactory,
    LiveMessage,
    LiveSessionInfo,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[LiveMessage], None]


class SessionAlreadyActive(RuntimeError):
    """Raised by `start` when a session is already starting, active or stopping."""

    def __init__(self, snapshot: LiveSessionSnapshot) -> None:
        super().__init__(f"live session is {snapshot.state.value}")
        self.snapshot = snapshot


class LiveSessionManager:
    """Start, stop and report on the live session."""

    def __init__(
        self,
        *,
        bus: EventBus,
        feed_factory: LiveFeedFactory,
        stop_timeout_seconds: float = 5.0,
        on_message: MessageHandler | None = None,
    ) -> None:
        self._bus = bus
        self._feed_factory = feed_factory
        self._stop_timeout = stop_timeout_seconds
        self._on_message = on_message
        self._lock = asyncio.Lock()
        self._state = LiveState.IDLE
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[None] | None = None
        self._info: LiveSessionInfo | None = None
        self._started_at: dt.datetime | None = None
        self._stopped = asyncio.Event()
        self._last_stopped: LiveSessionSnapshot | None = None

    @property
    def state(self) -> LiveState:
        return self._state

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        self._on_message = handler

    def status(self) -> LiveSessionSnapshot:
        """Return the current snapshot without waiting for the lock."""
        return self._snapshot()

    async def start(self) -> LiveSessionSnapshot:
        """Spawn the listening task and return immediately in STARTING."""
        async with self._lock:
            if self._state is not LiveState.IDLE:
                raise SessionAlreadyActive(self._snapshot())
            self._state = LiveState.STARTING
            self._stopped = asyncio.Event()
            self._token = CancellationToken()
            self._task = asyncio.create_task(self._run(self._token), name="vutber-live-session")
            self._task.add_done_callback(self._on_task_done)
            logger.info("Live session starting.")
            return self._snapshot()

    async def stop(self) -> LiveSessionSnapshot | None:
        """
        Cancel the session and wait for the listening task to exit.

        Returns ``None`` when there was nothing to stop. A concurrent caller
        that finds the session already STOPPING waits for that stop to finish.
        """
        async with self._lock:
            if self._state is LiveState.IDLE:
                return None
            if self._state is LiveState.STOPPING:
                stopped = self._stopped
                owner = False
            else:
                self._state = LiveState.STOPPING
                stopped = self._stopped
                owner = True
                task = self._task
                if self._token is not None:
                    self._token.cancel()
        if not owner:
            await stopped.wait()
            return self._last_stopped

        if task is not None:
            await self._join(task)
        async with self._lock:
            snapshot = self._finish()
        self._bus.publish(LiveStoppedEvent(origin=Origin.LIVE, session=snapshot))
        logger.info("Live session stopped.")
        return snapshot

    async def shutdown(self) -> None:
        """Stop any running session at process exit."""
        try:
            await self.stop()
        except Exception:
            logger.exception("Failed to stop live session during shutdown.")

    async def _join(self, task: asyncio.Task[None]) -> None:
        _done, pending = await asyncio.wait({task}, timeout=self._stop_timeout)
        if pending:
            logger.warning(
                "Live session task did not exit within %.1fs; cancelling.", self._stop_timeout
            )
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, token: CancellationToken) -> None:
        feed: LiveFeed | None = None
        failure: Exception | None = None
        disconnected = False
        try:
            feed = self._feed_factory()
            info = await token.race(feed.connect())
            if await self._activate(info):
                disconnected = await self._listen(feed, token)
        except LiveCancelled:
            pass
        except Exception as exc:
            logger.warning("Live feed connection failed: %s", exc)
            failure = exc
        finally:
            if feed is not None:
                await self._close_feed(feed)

        if failure is not None:
            await self._connection_failed(failure)
        elif disconnected:
            await self._finish_disconnect()

    async def _activate(self, info: LiveSessionInfo) -> bool:
        async with self._lock:
            if self._state is not LiveState.STARTING:
                return False
            self._state = LiveState.ACTIVE
            self._info = info
            self._started_at = dt.datetime.now(tz=dt.UTC)
            snapshot = self._snapshot()
        logger.info("Live session active (game_id=%s room_id=%s)", info.game_id, info.room_id)
        self._bus.publish(LiveStartedEvent(origin=Origin.LIVE, session=snapshot))
        return True

    async def _listen(self, feed: LiveFeed, token: CancellationToken) -> bool:
        """Dispatch messages until cancelled; return True when the feed went away."""
        try:
            while True:
                message = await token.race(feed.receive())
                if message is None:
                    logger.info("Live feed disconnected.")
                    return True
                self._dispatch(message)
        except LiveCancelled:
            return False
        except Exception:
            logger.exception("Live feed failed while reading.")
            return True

    async def _connection_failed(self, exc: Exception) -> None:
        async with self._lock:
            if self._state is not LiveState.STARTING:
                return
            self._finish()
        self._bus.publish(
            ErrorEvent(
                origin=Origin.LIVE,
                error_type=ErrorType.LIVE_CONNECTION_FAILURE,
                message=f"live connection failed: {exc}",
            )
        )

    async def _finish_disconnect(self) -> None:
        async with self._lock:
            if self._state is not LiveState.ACTIVE:
                return
            self._state = LiveState.STOPPING
            snapshot = self._finish()
        self._bus.publish(LiveStoppedEvent(origin=Origin.LIVE, session=snapshot))

    def _dispatch(self, message: LiveMessage) -> None:
        self._bus.publish(LiveFeedEvent(origin=Origin.LIVE, cmd=message.cmd, data=message.data))
        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Live message handler failed for %s", message.cmd)

    async def _close_feed(self, feed: LiveFeed) -> None:
        try:
            await feed.close()
        except Exception:
            logger.exception("Failed to close live feed.")

    def _finish(self) -> LiveSessionSnapshot:
        """Return the final snapshot and reset to IDLE; caller holds the lock."""
        final = self._snapshot().model_copy(
            update={"state": LiveState.IDLE, "active": False}
        )
        self._state = LiveState.IDLE
        self._token = None
        self._task = None
        self._info = None
        self._started_at = None
        self._last_stopped = final
        self._stopped.set()
        return final

    def _snapshot(self) -> LiveSessionSnapshot:
        info = self._info
        uptime: int | None = None
        if self._started_at is not None:
            uptime = max(0, int((dt.datetime.now(tz=dt.UTC) - self._started_at).total_seconds()))
        return LiveSessionSnapshot(
            state=self._state,
            active=self._state is LiveState.ACTIVE,
            game_id=info.game_id if info else None,
            room_id=info.room_id if info else None,
            anchor_name=info.anchor_name if info else None,
            anchor_open_id=info.anchor_open_id if info else None,
            started_at=self._started_at,
            uptime_seconds=uptime,
        )

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Live session task crashed", exc_info=exc)


__all__ = ["LiveSessionManager", "SessionAlreadyActive"]
