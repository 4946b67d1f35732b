"""
Build capability executors and the intent router from configuration.

Each capability resolves its provider route; ``none``/``disabled`` or a
missing route leaves it unconfigured, while an unknown provider name is a
configuration error.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping

import httpx

from ..core.config import CapabilityRoute, ConfigError, ConfigSnapshot
from ..intent.classifier import (
    FallbackIntentClassifier,
    IntentClassifier,
    KeywordIntentClassifier,
    LlmIntentClassifier,
)
from .base import CapabilityExecutor, ChatCompletionsClient
from .conversation import ConversationExecutor
from .image import OpenAiImageExecutor
from .music import HyperbolicMusicExecutor
from .video import CustomVideoExecutor

logger = logging.getLogger(__name__)


class CapabilityRegistry(Mapping[str, CapabilityExecutor]):
    """Read-only mapping from capability name to its configured executor."""

    def __init__(self, executors: Mapping[str, CapabilityExecutor] | None = None) -> None:
        self._executors = dict(executors or {})

    def __getitem__(self, name: str) -> CapabilityExecutor:
        return self._executors[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)


def _active(route: CapabilityRoute | None) -> CapabilityRoute | None:
    if route is None or route.disabled:
        return None
    return route


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _chat_client(
    route: CapabilityRoute, snapshot: ConfigSnapshot, purpose: str, http: httpx.AsyncClient | None
) -> tuple[ChatCompletionsClient, str]:
    """Return a chat client for ``route`` together with the provider's preamble."""
    if route.provider == "openai":
        _require(snapshot.openai.configured, f"openai.api_key is required for {purpose}")
        client = ChatCompletionsClient(
            url=snapshot.openai.base_url.rstrip("/") + "/chat/completions",
            api_key=snapshot.openai.api_key or "",
            model=route.model or snapshot.openai.chat_model,
            client=http,
        )
        return client, snapshot.openai.agent_preamble
    if route.provider == "zhipu":
        _require(snapshot.zhipu.configured, f"zhipu.api_key is required for {purpose}")
        client = ChatCompletionsClient(
            url=snapshot.zhipu.api_url,
            api_key=snapshot.zhipu.api_key or "",
            model=route.model or snapshot.zhipu.chat_model,
            client=http,
        )
        return client, snapshot.zhipu.agent_preamble
    raise ConfigError(f"Unsupported {purpose} provider: {route.provider}")


def build_capabilities(
    snapshot: ConfigSnapshot, *, http: httpx.AsyncClient | None = None
) -> CapabilityRegistry:
    executors: dict[str, CapabilityExecutor] = {}
    routes = snapshot.providers

    if route := _active(routes.conversation):
        client, preamble = _chat_client(route, snapshot, "conversation", http)
        executors["conversation"] = ConversationExecutor(client, preamble=preamble)

    if route := _active(routes.image):
        _require(route.provider == "openai", f"Unsupported image provider: {route.provider}")
        _require(snapshot.openai.configured, "openai.api_key is required for image")
        executors["image"] = OpenAiImageExecutor(
            api_key=snapshot.openai.api_key or "",
            model=route.model or snapshot.openai.image_model,
            base_url=snapshot.openai.base_url,
            client=http,
        )

    if route := _active(routes.music):
        _require(route.provider == "hyperbolic", f"Unsupported music provider: {route.provider}")
        _require(snapshot.hyperbolic.configured, "hyperbolic.api_key is required for music")
        executors["music"] = HyperbolicMusicExecutor(
            api_key=snapshot.hyperbolic.api_key or "",
            language=route.model or snapshot.hyperbolic.language,
            voice=snapshot.hyperbolic.voice,
            base_url=snapshot.hyperbolic.base_url,
            client=http,
        )

    if route := _active(routes.video):
        _require(route.provider == "custom", f"Unsupported video provider: {route.provider}")
        _require(snapshot.video.configured, "video.endpoint is required for video")
        executors["video"] = CustomVideoExecutor(
            endpoint=snapshot.video.endpoint or "",
            api_key=snapshot.video.api_key,
            format=route.model or snapshot.video.format,
            max_duration_seconds=snapshot.video.max_duration_seconds,
            client=http,
        )

    logger.info("Configured capabilities: %s", ", ".join(sorted(executors)) or "none")
    return CapabilityRegistry(executors)


def build_intent_classifier(
    snapshot: ConfigSnapshot, *, http: httpx.AsyncClient | None = None
) -> IntentClassifier:
    primary: IntentClassifier | None = None
    if route := _active(snapshot.providers.intent):
        client, _preamble = _chat_client(route, snapshot, "intent routing", http)
        primary = LlmIntentClassifier(client)
    else:
        logger.info("No intent router configured; using keyword classification only.")
    return FallbackIntentClassifier(
        primary, KeywordIntentClassifier(), min_confidence=snapshot.intent.min_confidence
    )


__all__ = [
    "CapabilityRegistry",
    "build_capabilities",
    "build_intent_classifier",
]
