"""
Bilibili open-platform live feed.

A session is opened through the signed REST API (``/v2/app/start``), then the
first websocket link is dialled, authenticated with an op-7 packet and kept
alive with op-2 packets plus periodic project heartbeats. Closing the feed
tears the websocket down and ends the project session.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import hashlib
import hmac
import json
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..core.config import BilibiliLiveSettings
from .feed import LiveFeedError, LiveMessage, LiveSessionInfo
from .packet import (
    OP_AUTH,
    OP_AUTH_REPLY,
    OP_HEARTBEAT,
    OP_HEARTBEAT_REPLY,
    OP_SEND_EVENT,
    PacketError,
    decode_packets,
    encode_packet,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://live-open.biliapi.com"
WS_HEARTBEAT_SECONDS = 20.0
HTTP_TIMEOUT_SECONDS = 10.0


def signature_headers(
    access_key: str,
    access_secret: str,
    body: str,
    *,
    timestamp: int | None = None,
    nonce: str | None = None,
) -> dict[str, str]:
    """Build the ``x-bili-*`` headers and HMAC-SHA256 ``Authorization`` for a request body."""
    content_md5 = hashlib.md5(body.encode("utf-8")).hexdigest()
    signed = {
        "x-bili-accesskeyid": access_key,
        "x-bili-content-md5": content_md5,
        "x-bili-signature-method": "HMAC-SHA256",
        "x-bili-signature-nonce": nonce or str(uuid.uuid4()),
        "x-bili-signature-version": "1.0",
        "x-bili-timestamp": str(timestamp if timestamp is not None else int(time.time())),
    }
    canonical = "\n".join(f"{key}:{value}" for key, value in signed.items())
    signature = hmac.new(
        access_secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return {
        "Accept": "application/json",
        "Content-Type": "application/json",
        **signed,
        "Authorization": signature,
    }


class BilibiliApiError(LiveFeedError):
    """The open-platform API rejected a call."""


class BilibiliOpenApi:
    """Thin signed client for the open-platform project endpoints."""

    def __init__(
        self,
        settings: BilibiliLiveSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.host or DEFAULT_BASE_URL, timeout=HTTP_TIMEOUT_SECONDS
        )

    async def start(self, code: str) -> dict[str, Any]:
        response = await self._post(
            "/v2/app/start", {"code": code, "app_id": self._settings.app_id}
        )
        if response.get("code", 0) != 0:
            raise BilibiliApiError(
                f"start returned {response.get('code')}: {response.get('message', '')}"
            )
        data = response.get("data")
        if not isinstance(data, dict):
            raise BilibiliApiError("start response carried no data")
        return data

    async def heartbeat(self, game_id: str) -> None:
        response = await self._post("/v2/app/heartbeat", {"game_id": game_id})
        if response.get("code", 0) != 0:
            logger.warning(
                "Project heartbeat failed: %s %s", response.get("code"), response.get("message")
            )

    async def end(self, game_id: str) -> None:
        response = await self._post(
            "/v2/app/end", {"app_id": self._settings.app_id, "game_id": game_id}
        )
        if response.get("code", 0) != 0:
            logger.warning(
                "Project end failed: %s %s", response.get("code"), response.get("message")
            )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps(payload, separators=(",", ":"))
        headers = signature_headers(
            self._settings.access_key, self._settings.access_secret, body
        )
        try:
            response = await self._client.post(path, content=body, headers=headers)
            response.raise_for_status()
            parsed = response.json()
        except httpx.HTTPError as exc:
            raise BilibiliApiError(f"{path} failed: {exc}") from exc
        except ValueError as exc:
            raise BilibiliApiError(f"{path} returned invalid JSON") from exc
        if not isinstance(parsed, dict):
            raise BilibiliApiError(f"{path} returned unexpected payload")
        return parsed


def _subscribe_url(url: str) -> str:
    if url.endswith("/sub"):
        return url
    return url + ("sub" if url.endswith("/") else "/sub")


class BilibiliLiveFeed:
    """`LiveFeed` implementation backed by the Bilibili open platform."""

    def __init__(
        self,
        settings: BilibiliLiveSettings,
        *,
        api: BilibiliOpenApi | None = None,
        ws_connect: Callable[..., Any] | None = None,
        ws_heartbeat_seconds: float = WS_HEARTBEAT_SECONDS,
    ) -> None:
        self._settings = settings
        self._api = api or BilibiliOpenApi(settings)
        self._ws_connect = ws_connect or websockets.connect
        self._ws_heartbeat_seconds = ws_heartbeat_seconds
        self._ws: Any = None
        self._game_id: str | None = None
        self._pending: collections.deque[LiveMessage] = collections.deque()
        self._tasks: list[asyncio.Task[None]] = []
        self._closed = False

    async def connect(self) -> LiveSessionInfo:
        code = self._settings.id_code
        if not code:
            raise LiveFeedError("live.bilibili.id_code is not configured")
        data = await self._api.start(code)
        game_id = str((data.get("game_info") or {}).get("game_id") or "")
        websocket_info = data.get("websocket_info") or {}
        links = websocket_info.get("wss_link") or []
        if not game_id or not links:
            raise LiveFeedError("start response is missing game_id or wss_link")
        self._game_id = game_id

        url = _subscribe_url(str(links[0]))
        logger.info("Connecting to live websocket %s", url)
        try:
            self._ws = await self._ws_connect(url, ping_interval=None)
            auth_body = str(websocket_info.get("auth_body") or "")
            await self._ws.send(encode_packet(OP_AUTH, auth_body.encode("utf-8")))
        except (OSError, WebSocketException) as exc:
            raise LiveFeedError(f"websocket connection failed: {exc}") from exc

        self._tasks = [
            asyncio.create_task(self._ws_heartbeat_loop(), name="vutber-live-ws-heartbeat"),
            asyncio.create_task(self._api_heartbeat_loop(), name="vutber-live-api-heartbeat"),
        ]
        anchor = data.get("anchor_info") or {}
        room_id = anchor.get("room_id")
        return LiveSessionInfo(
            game_id=game_id,
            room_id=int(room_id) if room_id is not None else None,
            anchor_name=anchor.get("uname") or "Unknown",
            anchor_open_id=anchor.get("open_id"),
        )

    async def receive(self) -> LiveMessage | None:
        while not self._pending:
            if self._ws is None:
                return None
            try:
                frame = await self._ws.recv()
            except ConnectionClosed as exc:
                logger.info("Live websocket closed: %s", exc)
                return None
            if isinstance(frame, str):
                logger.debug("Ignoring text frame from live websocket")
                continue
            try:
                self._handle_frame(frame)
            except PacketError as exc:
                logger.warning("Dropping malformed live frame: %s", exc)
        return self._pending.popleft()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await self._ws.close()
            self._ws = None
        try:
            if self._game_id is not None:
                await self._api.end(self._game_id)
        except LiveFeedError as exc:
            logger.warning("Failed to end live project session: %s", exc)
        finally:
            await self._api.aclose()

    def _handle_frame(self, frame: bytes) -> None:
        for packet in decode_packets(frame):
            if packet.operation == OP_AUTH_REPLY:
                logger.info("Live websocket authenticated; receiving events.")
            elif packet.operation == OP_HEARTBEAT_REPLY:
                logger.debug("Live websocket heartbeat acknowledged.")
            elif packet.operation == OP_SEND_EVENT:
                for message in packet.messages():
                    cmd = message.get("cmd")
                    if not isinstance(cmd, str):
                        continue
                    data = message.get("data")
                    self._pending.append(
                        LiveMessage(cmd=cmd, data=data if isinstance(data, dict) else {})
                    )
            else:
                logger.debug(
                    "Unhandled live packet op=%d (%d bytes)", packet.operation, len(packet.body)
                )

    async def _ws_heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ws_heartbeat_seconds)
            if self._ws is None:
                return
            try:
                await self._ws.send(encode_packet(OP_HEARTBEAT))
            except ConnectionClosed:
                logger.warning("Live websocket heartbeat failed; connection closed.")
                return

    async def _api_heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval_seconds)
            if self._game_id is None:
                return
            try:
                await self._api.heartbeat(self._game_id)
            except LiveFeedError as exc:
                logger.warning("Project heartbeat call failed: %s", exc)


__all__ = [
    "BilibiliApiError",
    "BilibiliLiveFeed",
    "BilibiliOpenApi",
    "signature_headers",
]
