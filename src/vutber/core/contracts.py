"""
Contracts and payload schemas shared by the gateway components.

Every event pushed to listeners is one variant of a closed, discriminated
union keyed on ``kind``. Commands, signature payloads, live-session snapshots
and artifact references are also defined here so the boundary, the
orchestrator and the live session manager agree on a single typed vocabulary.
"""

from __future__ import annotations

import abc
import datetime as dt
import enum
import uuid
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def _utc_now() -> dt.datetime:
    return dt.datetime.now(tz=dt.UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


class BasePayload(BaseModel):
    """Base class for all immutable payloads."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Origin(str, enum.Enum):
    """Where an event came from."""

    COMMAND = "command"
    LIVE = "live"
    SYSTEM = "system"


class LiveState(str, enum.Enum):
    """Lifecycle states of the single live session."""

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class ErrorType(str, enum.Enum):
    """Error classes surfaced to listeners as `error` events."""

    CAPABILITY_FAILURE = "capability_failure"
    INTERNAL_DISPATCH_FAILURE = "internal_dispatch_failure"
    LIVE_CONNECTION_FAILURE = "live_connection_failure"


class ArtifactReference(BasePayload):
    """Pointer to a generated artifact persisted by the artifact writer."""

    path: str = Field(description="Absolute path of the artifact on disk.")
    media_type: str = Field(description="MIME type of the artifact.")
    size_bytes: int = Field(ge=0)
    metadata_path: str | None = Field(default=None, description="Path of the .meta.json sidecar.")
    metadata: dict[str, Any] = Field(default_factory=dict)


class LiveSessionSnapshot(BasePayload):
    """Point-in-time view of the live session."""

    state: LiveState = LiveState.IDLE
    active: bool = False
    game_id: str | None = None
    room_id: int | None = None
    anchor_name: str | None = None
    anchor_open_id: str | None = None
    started_at: dt.datetime | None = None
    uptime_seconds: int | None = Field(default=None, ge=0)


class CapabilityStatus(BasePayload):
    """Whether an intent has a configured executor."""

    intent: str
    enabled: bool


class BaseEvent(BasePayload):
    """Fields shared by every event variant."""

    event_id: str = Field(default_factory=_new_id)
    created_at: dt.datetime = Field(default_factory=_utc_now)
    origin: Origin = Origin.COMMAND
    command_id: str | None = Field(
        default=None, description="Identifier of the single command this event answers."
    )
    context: dict[str, Any] = Field(default_factory=dict)


class ConversationEvent(BaseEvent):
    kind: Literal["conversation"] = "conversation"
    response: str


class ArtifactEvent(BaseEvent):
    kind: Literal["artifact"] = "artifact"
    intent: str
    artifact: ArtifactReference
    description: str = ""


class HelpEvent(BaseEvent):
    kind: Literal["help"] = "help"
    message: str


class LiveStartedEvent(BaseEvent):
    kind: Literal["live.started"] = "live.started"
    session: LiveSessionSnapshot


class LiveStoppedEvent(BaseEvent):
    kind: Literal["live.stopped"] = "live.stopped"
    session: LiveSessionSnapshot


class LiveStatusEvent(BaseEvent):
    kind: Literal["live.status"] = "live.status"
    session: LiveSessionSnapshot


class LiveFeedEvent(BaseEvent):
    """Raw message received from the external live feed."""

    kind: Literal["live.event"] = "live.event"
    cmd: str
    data: dict[str, Any] = Field(default_factory=dict)


class SystemReadyEvent(BaseEvent):
    kind: Literal["system.ready"] = "system.ready"
    message: str
    capabilities: list[CapabilityStatus] = Field(default_factory=list)
    help: str = ""


class ErrorEvent(BaseEvent):
    kind: Literal["error"] = "error"
    error_type: ErrorType
    message: str


Event = Annotated[
    ConversationEvent
    | ArtifactEvent
    | HelpEvent
    | LiveStartedEvent
    | LiveStoppedEvent
    | LiveStatusEvent
    | LiveFeedEvent
    | SystemReadyEvent
    | ErrorEvent,
    Field(discriminator="kind"),
]

EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


class CommandAction(str, enum.Enum):
    COMMAND = "command"
    LIVE_START = "live_start"
    LIVE_STOP = "live_stop"
    LIVE_STATUS = "live_status"


class CommandRequest(BaseModel):
    """JSON body accepted by `POST /command`."""

    model_config = ConfigDict(extra="ignore")

    action: CommandAction
    input: str | None = None


class Command(BasePayload):
    """Validated command handed to the orchestrator exactly once."""

    command_id: str = Field(default_factory=_new_id)
    action: CommandAction
    input: str | None = None
    submitted_at: dt.datetime = Field(default_factory=_utc_now)

    @classmethod
    def from_request(cls, request: CommandRequest) -> Command:
        if request.action is CommandAction.COMMAND and request.input is None:
            raise ValueError("action 'command' requires an 'input' field")
        return cls(action=request.action, input=request.input)


class CommandReceipt(BasePayload):
    """Synchronous acknowledgement returned by the orchestrator."""

    command_id: str
    status: Literal["accepted"] = "accepted"
    live: LiveSessionSnapshot | None = None


class SignaturePayload(BaseModel):
    """Query parameters carried by every authenticated request."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    access_key: str = Field(min_length=1)
    timestamp: int
    nonce: str = Field(min_length=1, max_length=128)
    signature: str = Field(min_length=1)


class BusStatus(BasePayload):
    """Telemetry snapshot of the event bus."""

    subscriber_count: int = Field(ge=0)
    published_total: int = Field(ge=0)
    delivered_total: int = Field(ge=0)
    dropped_subscribers_total: int = Field(
        ge=0, description="Subscribers disconnected because their queue overflowed."
    )


class HealthStatus(BaseModel):
    """Structured health report for modules."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class ModuleConfig(BaseModel):
    """Baseline configuration contract applied to all modules."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary module configuration."
    )


if TYPE_CHECKING:
    from .bus import EventBus


class BaseModule(abc.ABC):
    """
    Abstract base class for long-lived components wired by the orchestrator.

    Modules receive the event bus before configuration and own whatever
    server or background task they start.
    """

    name: str

    def __init__(self) -> None:
        self._configured = False
        self._config = ModuleConfig()
        self._bus: EventBus | None = None

    @property
    def bus(self) -> EventBus:
        if self._bus is None:
            raise RuntimeError(f"{self.__class__.__name__} has not been attached to an EventBus.")
        return self._bus

    def set_bus(self, bus: EventBus) -> None:
        """Attach the shared event bus instance to the module."""
        self._bus = bus

    async def configure(self, config: ModuleConfig) -> None:
        """Apply the provided configuration prior to module start."""
        self._config = config
        self._configured = True

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin serving."""

    async def stop(self) -> None:
        """Release resources; the default is a no-op."""
        return None

    async def health(self) -> HealthStatus:
        """Return a basic health status; modules can override for richer diagnostics."""
        status = "healthy" if self._configured else "degraded"
        return HealthStatus(status=status, details={"configured": self._configured})


__all__ = [
    "EVENT_ADAPTER",
    "ArtifactEvent",
    "ArtifactReference",
    "BaseEvent",
    "BaseModule",
    "BasePayload",
    "BusStatus",
    "CapabilityStatus",
    "Command",
    "CommandAction",
    "CommandReceipt",
    "CommandRequest",
    "ConversationEvent",
    "ErrorEvent",
    "ErrorType",
    "Event",
    "HealthStatus",
    "HelpEvent",
    "LiveFeedEvent",
    "LiveSessionSnapshot",
    "LiveStartedEvent",
    "LiveState",
    "LiveStatusEvent",
    "LiveStoppedEvent",
    "ModuleConfig",
    "Origin",
    "SignaturePayload",
    "SystemReadyEvent",
]
