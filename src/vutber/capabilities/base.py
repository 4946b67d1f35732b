"""
Shared types for capability executors.

Executors turn a prompt into either text or a binary artifact. They raise
`CapabilityError` for any provider failure; the orchestrator turns that into
an `error` event instead of letting it escape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx


class CapabilityError(RuntimeError):
    """Raised when a provider call fails or returns an unusable result."""


@dataclass(frozen=True)
class TextResult:
    text: str


@dataclass(frozen=True)
class BinaryArtifact:
    data: bytes
    media_type: str
    file_extension: str
    summary: str
    metadata: dict[str, Any] = field(default_factory=dict)


CapabilityResult = TextResult | BinaryArtifact


class CapabilityExecutor(Protocol):
    """Protocol implemented by every generation capability."""

    async def execute(self, prompt: str) -> CapabilityResult: ...


class ChatCompletionsClient:
    """
    Minimal client for OpenAI-compatible chat completion endpoints.

    Both OpenAI and Zhipu speak the same request and response shape, so a
    single client serves the conversation capability and the intent router.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        model: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self.model = model
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def complete(self, messages: list[dict[str, str]]) -> str:
        payload = {"model": self.model, "messages": messages}
        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise CapabilityError(f"chat completion request failed: {exc}") from exc
        except ValueError as exc:
            raise CapabilityError("chat completion returned invalid JSON") from exc
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise CapabilityError("chat completion response has no message content") from exc
        if not isinstance(content, str):
            raise CapabilityError("chat completion content is not text")
        return content

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "BinaryArtifact",
    "CapabilityError",
    "CapabilityExecutor",
    "CapabilityResult",
    "ChatCompletionsClient",
    "TextResult",
]
