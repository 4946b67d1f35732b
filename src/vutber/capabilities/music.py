"""Audio generation through the Hyperbolic audio API."""

from __future__ import annotations

import base64
import binascii

import httpx

from .base import BinaryArtifact, CapabilityError


class HyperbolicMusicExecutor:
    """Render the prompt to speech/music and return the decoded MP3."""

    def __init__(
        self,
        *,
        api_key: str,
        language: str = "EN",
        voice: str = "EN-US",
        base_url: str = "https://api.hyperbolic.xyz",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._language = language
        self._voice = voice
        self._url = base_url.rstrip("/") + "/v1/audio/generation"
        self._client = client or httpx.AsyncClient(timeout=120.0)

    async def execute(self, prompt: str) -> BinaryArtifact:
        payload = {"text": prompt, "language": self._language, "speaker": self._voice}
        try:
            response = await self._client.post(
                self._url, json=payload, headers={"Authorization": f"Bearer {self._api_key}"}
            )
            response.raise_for_status()
            data = base64.b64decode(response.json()["audio"], validate=True)
        except httpx.HTTPError as exc:
            raise CapabilityError(f"audio generation failed: {exc}") from exc
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise CapabilityError("audio generation returned no usable audio") from exc
        return BinaryArtifact(
            data=data,
            media_type="audio/mpeg",
            file_extension="mp3",
            summary=f"Language: {self._language} | Voice: {self._voice}",
            metadata={"prompt": prompt, "language": self._language, "voice": self._voice},
        )


__all__ = ["HyperbolicMusicExecutor"]
