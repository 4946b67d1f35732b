"""Image generation through the OpenAI images API."""

from __future__ import annotations

import base64
import binascii

import httpx

from .base import BinaryArtifact, CapabilityError


class OpenAiImageExecutor:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        width: int = 1024,
        height: int = 1024,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = base_url.rstrip("/") + "/images/generations"
        self._width = width
        self._height = height
        self._client = client or httpx.AsyncClient(timeout=120.0)

    async def execute(self, prompt: str) -> BinaryArtifact:
        payload = {
            "model": self._model,
            "prompt": prompt,
            "n": 1,
            "size": f"{self._width}x{self._height}",
            "response_format": "b64_json",
        }
        try:
            response = await self._client.post(
                self._url, json=payload, headers={"Authorization": f"Bearer {self._api_key}"}
            )
            response.raise_for_status()
            encoded = response.json()["data"][0]["b64_json"]
            data = base64.b64decode(encoded, validate=True)
        except httpx.HTTPError as exc:
            raise CapabilityError(f"image generation failed: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError, binascii.Error) as exc:
            raise CapabilityError("image generation returned no usable image") from exc

        return BinaryArtifact(
            data=data,
            media_type="image/png",
            file_extension="png",
            summary=f"Model: {self._model} | Size: {self._width}x{self._height}",
            metadata={
                "prompt": prompt,
                "model": self._model,
                "width": self._width,
                "height": self._height,
            },
        )


__all__ = ["OpenAiImageExecutor"]
