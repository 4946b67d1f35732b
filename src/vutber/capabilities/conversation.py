"""Conversation capability backed by an OpenAI-compatible chat endpoint."""

from __future__ import annotations

import asyncio
import logging

from .base import ChatCompletionsClient, TextResult

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 24


class ConversationExecutor:
    """Keeps a rolling dialogue history shared by every caller."""

    def __init__(
        self,
        client: ChatCompletionsClient,
        *,
        preamble: str,
        max_history: int = MAX_HISTORY_MESSAGES,
    ) -> None:
        self._client = client
        self._preamble = preamble
        self._max_history = max_history
        self._history: list[dict[str, str]] = []
        self._lock = asyncio.Lock()

    @property
    def history(self) -> list[dict[str, str]]:
        return list(self._history)

    async def execute(self, prompt: str) -> TextResult:
        # Serialised so concurrent turns do not interleave in the history.
        async with self._lock:
            messages = [
                {"role": "system", "content": self._preamble},
                *self._history,
                {"role": "user", "content": prompt},
            ]
            reply = await self._client.complete(messages)
            self._history.append({"role": "user", "content": prompt})
            self._history.append({"role": "assistant", "content": reply})
            overflow = len(self._history) - self._max_history
            if overflow > 0:
                del self._history[:overflow]
        logger.debug("Conversation turn completed with %s", self._client.model)
        return TextResult(text=reply)


__all__ = ["MAX_HISTORY_MESSAGES", "ConversationExecutor"]
