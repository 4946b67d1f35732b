"""
Video generation through a custom HTTP endpoint.

The endpoint receives ``{prompt, format, max_duration_seconds?}``. It may answer
with the raw video bytes, or with JSON carrying either ``video_base64`` or a
``video_url`` to download, plus optional ``content_type``, ``ext`` and
``summary`` fields.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx

from .base import BinaryArtifact, CapabilityError

logger = logging.getLogger(__name__)


class CustomVideoExecutor:
    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str | None = None,
        format: str = "mp4",
        max_duration_seconds: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._format = format
        self._max_duration_seconds = max_duration_seconds
        self._client = client or httpx.AsyncClient(timeout=300.0)

    async def execute(self, prompt: str) -> BinaryArtifact:
        payload: dict[str, Any] = {"prompt": prompt, "format": self._format}
        if self._max_duration_seconds is not None:
            payload["max_duration_seconds"] = self._max_duration_seconds
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            response = await self._client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CapabilityError(f"video service failed: {exc}") from exc

        content_type = response.headers.get("content-type", "application/octet-stream")
        if "application/json" in content_type:
            try:
                body = response.json()
            except ValueError as exc:
                raise CapabilityError("video service returned invalid JSON") from exc
            if not isinstance(body, dict):
                raise CapabilityError("video service returned unexpected JSON")
            return await self._from_json(body, prompt)
        return BinaryArtifact(
            data=response.content,
            media_type=content_type,
            file_extension=self._format,
            summary="External video service",
            metadata={"prompt": prompt, "format": self._format},
        )

    async def _from_json(self, body: dict[str, Any], prompt: str) -> BinaryArtifact:
        if body.get("video_base64"):
            try:
                data = base64.b64decode(body["video_base64"], validate=True)
            except (binascii.Error, ValueError) as exc:
                raise CapabilityError("video payload is not valid base64") from exc
        elif body.get("video_url"):
            logger.debug("Fetching generated video from %s", body["video_url"])
            try:
                download = await self._client.get(body["video_url"])
                download.raise_for_status()
            except httpx.HTTPError as exc:
                raise CapabilityError(f"video download failed: {exc}") from exc
            data = download.content
        else:
            raise CapabilityError("video service response lacks video_base64 or video_url")
        return BinaryArtifact(
            data=data,
            media_type=body.get("content_type") or "video/mp4",
            file_extension=body.get("ext") or self._format,
            summary=body.get("summary") or "Video plan",
            metadata={"prompt": prompt, "format": self._format},
        )


__all__ = ["CustomVideoExecutor"]
