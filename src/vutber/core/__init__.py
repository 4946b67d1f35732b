"""
Core infrastructure for the gateway.

Exposes the event bus, the shared contracts, configuration, request
authentication and the orchestrator.
"""

from .bus import EventBus, Subscriber
from .contracts import (
    BaseEvent,
    BaseModule,
    BasePayload,
    Command,
    CommandReceipt,
    HealthStatus,
    LiveSessionSnapshot,
    ModuleConfig,
)
from .config import ConfigError, ConfigService, ConfigSnapshot
from .auth import AuthGuard
from .orchestrator import Orchestrator

__all__ = [
    "AuthGuard",
    "BaseEvent",
    "BaseModule",
    "BasePayload",
    "Command",
    "CommandReceipt",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "EventBus",
    "HealthStatus",
    "LiveSessionSnapshot",
    "ModuleConfig",
    "Orchestrator",
    "Subscriber",
]
