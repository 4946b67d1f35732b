"""Live-room session management and the Bilibili open-platform feed."""

from .feed import CancellationToken, LiveFeed, LiveFeedError, LiveMessage, LiveSessionInfo
from .manager import LiveSessionManager, SessionAlreadyActive

__all__ = [
    "CancellationToken",
    "LiveFeed",
    "LiveFeedError",
    "LiveMessage",
    "LiveSessionInfo",
    "LiveSessionManager",
    "SessionAlreadyActive",
]
