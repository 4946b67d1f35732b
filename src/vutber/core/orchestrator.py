"""
Command router and lifecycle coordinator.

The orchestrator owns the shared event bus and the registered modules. It
accepts validated commands, classifies free-text input, dispatches it to the
matching capability executor and publishes the outcome as events. Live
session commands go straight to the `LiveSessionManager`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Mapping
from typing import TYPE_CHECKING, Any

from ..capabilities.base import CapabilityError, CapabilityExecutor, TextResult
from ..intent.classifier import FallbackIntentClassifier, Intent, IntentClassifier
from ..live.feed import LiveMessage
from .bus import EventBus
from .contracts import (
    ArtifactEvent,
    BaseModule,
    CapabilityStatus,
    Command,
    CommandAction,
    CommandReceipt,
    ConversationEvent,
    ErrorEvent,
    ErrorType,
    HealthStatus,
    HelpEvent,
    LiveStatusEvent,
    ModuleConfig,
    Origin,
    SystemReadyEvent,
)

if TYPE_CHECKING:
    from ..artifacts import ArtifactWriter
    from ..live.manager import LiveSessionManager

logger = logging.getLogger(__name__)

DANMAKU_CMD = "LIVE_OPEN_PLATFORM_DM"
CAPABILITY_ORDER = ("conversation", "image", "music", "video")

HELP_MESSAGE = (
    "Send a command with free-text input and it is routed automatically:\n"
    "- chat or ask a question for a conversational reply\n"
    "- describe a picture to generate an image\n"
    "- describe a song or melody to generate audio\n"
    "- describe a clip or animation to generate a video\n"
    "Live controls: live_start, live_stop and live_status."
)


class LiveUnavailable(RuntimeError):
    """Raised for live commands when no live feed is configured."""


class Orchestrator:
    """Route commands and manage module lifecycle."""

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        classifier: IntentClassifier | None = None,
        capabilities: Mapping[str, CapabilityExecutor] | None = None,
        artifacts: ArtifactWriter | None = None,
        live: LiveSessionManager | None = None,
    ) -> None:
        self.bus = bus or EventBus()
        self._classifier = classifier or FallbackIntentClassifier(None)
        self._capabilities = dict(capabilities or {})
        self._artifacts = artifacts
        self._live = live
        self._modules: list[BaseModule] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False
        if live is not None:
            live.set_message_handler(self.handle_live_message)

    @property
    def live(self) -> LiveSessionManager | None:
        return self._live

    @property
    def running(self) -> bool:
        return self._running

    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def add_module(self, module: BaseModule, config: ModuleConfig | None = None) -> None:
        """
        Register a module with an optional configuration.

        Modules receive the shared bus before configuration.
        """
        module.set_bus(self.bus)
        await module.configure(config or ModuleConfig())
        self._modules.append(module)
        logger.info("Registered module %s", module.name)

    async def start(self) -> None:
        """Start all registered modules and announce readiness."""
        if self._running:
            logger.warning("Orchestrator already running.")
            return
        for module in self._modules:
            logger.info("Starting module %s", module.name)
            await module.start()
        self._running = True
        self.bus.publish(
            SystemReadyEvent(
                origin=Origin.SYSTEM,
                message="Vutber gateway ready.",
                capabilities=self.capability_statuses(),
                help=HELP_MESSAGE,
            )
        )
        logger.info("Orchestrator started %d modules.", len(self._modules))

    async def stop(self) -> None:
        """Stop the live session, in-flight commands and modules, then close the bus."""
        if not self._running:
            logger.warning("Orchestrator stop requested while not running.")
            return
        if self._live is not None:
            await self._live.shutdown()
        if self._tasks:
            pending = list(self._tasks)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.clear()
        for module in reversed(self._modules):
            try:
                await module.stop()
            except Exception:
                logger.exception("Module %s failed to stop cleanly.", module.name)
        self.bus.close()
        self._running = False
        logger.info("Orchestrator stopped.")

    async def health(self) -> dict[str, HealthStatus]:
        """Aggregate health information from all modules."""
        reports: dict[str, HealthStatus] = {}
        for module in self._modules:
            reports[module.name] = await module.health()
        return reports

    def capability_statuses(self) -> list[CapabilityStatus]:
        return [
            CapabilityStatus(intent=name, enabled=name in self._capabilities)
            for name in CAPABILITY_ORDER
        ]

    async def handle(self, command: Command) -> CommandReceipt:
        """
        Accept a command and return as soon as it is dispatched.

        Raises `LiveUnavailable` for live commands without a live feed and
        lets `SessionAlreadyActive` from `live_start` propagate.
        """
        action = command.action
        if action is CommandAction.COMMAND:
            self._spawn(
                self._run_command(command.command_id, command.input or "", Origin.COMMAND, {}),
                name=f"vutber-command-{command.command_id[:8]}",
            )
            return CommandReceipt(command_id=command.command_id)

        live = self._require_live()
        if action is CommandAction.LIVE_START:
            snapshot = await live.start()
            return CommandReceipt(command_id=command.command_id, live=snapshot)
        if action is CommandAction.LIVE_STOP:
            self._spawn(live.stop(), name=f"vutber-live-stop-{command.command_id[:8]}")
            return CommandReceipt(command_id=command.command_id)
        snapshot = live.status()
        self.bus.publish(LiveStatusEvent(command_id=command.command_id, session=snapshot))
        return CommandReceipt(command_id=command.command_id, live=snapshot)

    def handle_live_message(self, message: LiveMessage) -> None:
        """Route chat messages from the live feed through the command pipeline."""
        if message.cmd != DANMAKU_CMD:
            return
        text = str(message.data.get("msg") or "").strip()
        if not text:
            return
        sender = str(message.data.get("uname") or "").strip() or "anonymous"
        command = Command(action=CommandAction.COMMAND, input=text)
        self._spawn(
            self._run_command(
                command.command_id, text, Origin.LIVE, {"sender": sender, "message": text}
            ),
            name=f"vutber-live-command-{command.command_id[:8]}",
        )

    def _require_live(self) -> LiveSessionManager:
        if self._live is None:
            raise LiveUnavailable("live session is not configured")
        return self._live

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)

        def _on_done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Background task %s failed", t.get_name(), exc_info=exc)

        task.add_done_callback(_on_done)

    async def _run_command(
        self, command_id: str, text: str, origin: Origin, context: dict[str, Any]
    ) -> None:
        common: dict[str, Any] = {"command_id": command_id, "origin": origin, "context": context}
        try:
            result = await self._classifier.classify(text)
            intent = result.intent
            logger.info(
                "Command %s classified as %s (%.2f via %s)",
                command_id,
                intent.value,
                result.confidence,
                result.source,
            )
            if intent is Intent.HELP:
                self.bus.publish(HelpEvent(message=HELP_MESSAGE, **common))
                return

            name = intent.capability or "conversation"
            executor = self._capabilities.get(name)
            if executor is None:
                self.bus.publish(
                    ErrorEvent(
                        error_type=ErrorType.CAPABILITY_FAILURE,
                        message=f"capability '{name}' is not configured",
                        **common,
                    )
                )
                return

            output = await executor.execute(text)
            if isinstance(output, TextResult):
                self.bus.publish(ConversationEvent(response=output.text, **common))
                return
            if self._artifacts is None:
                raise RuntimeError("no artifact writer configured")
            reference = await self._artifacts.write(
                intent.prefix, output, intent=intent.value, prompt=text
            )
            self.bus.publish(
                ArtifactEvent(
                    intent=intent.value,
                    artifact=reference,
                    description=output.summary,
                    **common,
                )
            )
        except CapabilityError as exc:
            logger.warning("Capability failed for command %s: %s", command_id, exc)
            self.bus.publish(
                ErrorEvent(error_type=ErrorType.CAPABILITY_FAILURE, message=str(exc), **common)
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Dispatch failed for command %s", command_id)
            self.bus.publish(
                ErrorEvent(
                    error_type=ErrorType.INTERNAL_DISPATCH_FAILURE,
                    message=f"internal error: {exc.__class__.__name__}",
                    **common,
                )
            )


__all__ = ["HELP_MESSAGE", "LiveUnavailable", "Orchestrator"]
