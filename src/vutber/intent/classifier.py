"""
Intent classification strategies.

`FallbackIntentClassifier` composes an LLM router with the keyword matcher:
when the router fails, cannot be parsed or reports a confidence below the
configured threshold, the keyword rules decide.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Protocol

from ..capabilities.base import CapabilityError, ChatCompletionsClient

logger = logging.getLogger(__name__)


class Intent(str, enum.Enum):
    CONVERSATION = "conversation"
    IMAGE_GENERATION = "image_generation"
    MUSIC_GENERATION = "music_generation"
    VIDEO_GENERATION = "video_generation"
    HELP = "help"
    UNKNOWN = "unknown"

    @property
    def prefix(self) -> str:
        """Short name used for artifact file names."""
        return _PREFIXES[self]

    @property
    def capability(self) -> str | None:
        """Capability that serves this intent; ``None`` for help."""
        return _CAPABILITIES[self]

    @classmethod
    def parse(cls, value: str) -> Intent:
        """Map a router label, including common aliases, to an intent."""
        return _ALIASES.get(value.strip().lower(), cls.UNKNOWN)


_PREFIXES = {
    Intent.CONVERSATION: "chat",
    Intent.IMAGE_GENERATION: "image",
    Intent.MUSIC_GENERATION: "music",
    Intent.VIDEO_GENERATION: "video",
    Intent.HELP: "help",
    Intent.UNKNOWN: "unknown",
}

_CAPABILITIES: dict[Intent, str | None] = {
    Intent.CONVERSATION: "conversation",
    Intent.UNKNOWN: "conversation",
    Intent.IMAGE_GENERATION: "image",
    Intent.MUSIC_GENERATION: "music",
    Intent.VIDEO_GENERATION: "video",
    Intent.HELP: None,
}

_ALIASES = {
    **dict.fromkeys(("conversation", "chat", "dialogue", "text"), Intent.CONVERSATION),
    **dict.fromkeys(
        ("image_generation", "image", "drawing", "paint", "art"), Intent.IMAGE_GENERATION
    ),
    **dict.fromkeys(("music_generation", "music", "song", "audio"), Intent.MUSIC_GENERATION),
    **dict.fromkeys(
        ("video_generation", "video", "animation", "film"), Intent.VIDEO_GENERATION
    ),
    **dict.fromkeys(("help", "support"), Intent.HELP),
}


@dataclass(frozen=True)
class IntentResult:
    intent: Intent
    confidence: float = 1.0
    source: str = "keywords"


class IntentClassificationError(RuntimeError):
    """Raised when a classifier cannot produce an intent."""


class IntentClassifier(Protocol):
    async def classify(self, text: str) -> IntentResult: ...


# Checked in order; the first list with a substring match wins.
KEYWORD_RULES: tuple[tuple[Intent, tuple[str, ...]], ...] = (
    (Intent.CONVERSATION, ("聊", "chat", "问", "explain", "说", "help")),
    (Intent.IMAGE_GENERATION, ("画", "image", "绘", "图", "picture", "logo", "design")),
    (Intent.MUSIC_GENERATION, ("music", "旋律", "歌曲", "歌", "伴奏", "和弦", "曲")),
    (Intent.VIDEO_GENERATION, ("视频", "video", "动画", "片段", "mv", "剪辑")),
)


class KeywordIntentClassifier:
    """Deterministic substring matcher; defaults to conversation."""

    def __init__(self, rules: tuple[tuple[Intent, tuple[str, ...]], ...] = KEYWORD_RULES) -> None:
        self._rules = rules

    async def classify(self, text: str) -> IntentResult:
        if not text.strip():
            return IntentResult(Intent.HELP, 1.0, "keywords")
        normalized = text.lower()
        for intent, keywords in self._rules:
            if any(keyword in normalized for keyword in keywords):
                return IntentResult(intent, 1.0, "keywords")
        return IntentResult(Intent.CONVERSATION, 0.5, "keywords")


ROUTER_SYSTEM_PROMPT = (
    "You are a strict router and answer only with JSON shaped as "
    '{"intent": "...", "confidence": 0.0}. intent must be one of conversation, '
    "image_generation, music_generation, video_generation or help; confidence is a "
    "number between 0 and 1."
)


def _strip_fences(reply: str) -> str:
    text = reply.strip()
    if text.startswith("```"):
        text = text[3:]
        if text.lower().startswith("json"):
            text = text[4:]
        if text.endswith("```"):
            text = text[:-3]
    return text.strip()


def parse_router_reply(reply: str) -> IntentResult | None:
    """Parse ``{"intent": ..., "confidence": ...}``, tolerating Markdown code fences."""
    try:
        payload = json.loads(_strip_fences(reply))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("intent"), str):
        return None
    confidence = payload.get("confidence", 1.0)
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        confidence = 1.0
    confidence = min(max(float(confidence), 0.0), 1.0)
    return IntentResult(Intent.parse(payload["intent"]), confidence, "llm")


class LlmIntentClassifier:
    """Ask a chat model to route the input."""

    def __init__(self, client: ChatCompletionsClient) -> None:
        self._client = client

    async def classify(self, text: str) -> IntentResult:
        if not text.strip():
            return IntentResult(Intent.HELP, 1.0, "llm")
        messages = [
            {"role": "system", "content": ROUTER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": "Classify the intent of this input and reply with JSON only.\n"
                f"Input: ```{text.strip()}```",
            },
        ]
        try:
            reply = await self._client.complete(messages)
        except CapabilityError as exc:
            raise IntentClassificationError(str(exc)) from exc
        result = parse_router_reply(reply)
        if result is None:
            raise IntentClassificationError(f"unparseable router reply: {reply[:200]!r}")
        return result


class FallbackIntentClassifier:
    """Try ``primary`` first and fall back to ``fallback`` on failure or low confidence."""

    def __init__(
        self,
        primary: IntentClassifier | None,
        fallback: IntentClassifier | None = None,
        *,
        min_confidence: float = 0.5,
    ) -> None:
        self._primary = primary
        self._fallback = fallback or KeywordIntentClassifier()
        self._min_confidence = min_confidence

    async def classify(self, text: str) -> IntentResult:
        if not text.strip():
            return IntentResult(Intent.HELP, 1.0, "input")
        if self._primary is not None:
            try:
                result = await self._primary.classify(text)
            except IntentClassificationError as exc:
                logger.warning("Intent router failed; using keyword fallback: %s", exc)
            else:
                if result.confidence >= self._min_confidence:
                    return result
                logger.info(
                    "Intent router confidence %.2f below %.2f; using keyword fallback",
                    result.confidence,
                    self._min_confidence,
                )
        return await self._fallback.classify(text)


__all__ = [
    "KEYWORD_RULES",
    "FallbackIntentClassifier",
    "Intent",
    "IntentClassificationError",
    "IntentClassifier",
    "IntentResult",
    "KeywordIntentClassifier",
    "LlmIntentClassifier",
    "parse_router_reply",
]
