"""Tests for the Bilibili open-platform feed with fake HTTP and websocket peers."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

from vutber.core.config import BilibiliLiveSettings
from vutber.live.bilibili import (
    BilibiliApiError,
    BilibiliLiveFeed,
    BilibiliOpenApi,
    signature_headers,
)
from vutber.live.feed import LiveFeedError
from vutber.live.packet import (
    HEADER,
    OP_AUTH,
    OP_AUTH_REPLY,
    OP_SEND_EVENT,
    decode_packets,
    encode_packet,
)

START_RESPONSE = {
    "code": 0,
    "data": {
        "game_info": {"game_id": "game-1"},
        "websocket_info": {"auth_body": '{"key":"auth"}', "wss_link": ["wss://ws.test/"]},
        "anchor_info": {"room_id": 5566, "uname": "anchor", "open_id": "open-1"},
    },
}


def _settings(**overrides) -> BilibiliLiveSettings:
    values = {
        "access_key": "bili-key",
        "access_secret": "bili-secret",
        "app_id": 1234,
        "id_code": "anchor-code",
    }
    values.update(overrides)
    return BilibiliLiveSettings(**values)


def _event_frame(*messages: dict) -> bytes:
    frames = b""
    for message in messages:
        body = json.dumps(message).encode()
        frames += HEADER.pack(16 + len(body), 16, 0, OP_SEND_EVENT, 0) + body
    return frames


class FakeApi:
    def __init__(self, start: dict | Exception = START_RESPONSE["data"]) -> None:
        self.start_result = start
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def start(self, code: str) -> dict:
        self.calls.append(("start", code))
        if isinstance(self.start_result, Exception):
            raise self.start_result
        return self.start_result

    async def heartbeat(self, game_id: str) -> None:
        self.calls.append(("heartbeat", game_id))

    async def end(self, game_id: str) -> None:
        self.calls.append(("end", game_id))

    async def aclose(self) -> None:
        self.closed = True


class FakeWebsocket:
    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.frames: asyncio.Queue[bytes | str | None] = asyncio.Queue()
        self.closed = False

    async def send(self, data: bytes) -> None:
        self.sent.append(data)

    async def recv(self) -> bytes | str:
        frame = await self.frames.get()
        if frame is None:
            raise ConnectionClosedOK(None, None)
        return frame

    async def close(self) -> None:
        self.closed = True


def test_signature_headers_sign_canonical_block() -> None:
    body = '{"code":"x"}'
    headers = signature_headers("ak", "secret", body, timestamp=1700000000, nonce="n-1")

    assert headers["x-bili-content-md5"] == hashlib.md5(body.encode()).hexdigest()
    canonical = "\n".join(
        [
            "x-bili-accesskeyid:ak",
            f"x-bili-content-md5:{headers['x-bili-content-md5']}",
            "x-bili-signature-method:HMAC-SHA256",
            "x-bili-signature-nonce:n-1",
            "x-bili-signature-version:1.0",
            "x-bili-timestamp:1700000000",
        ]
    )
    expected = hmac.new(b"secret", canonical.encode(), hashlib.sha256).hexdigest()
    assert headers["Authorization"] == expected
    assert headers["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_open_api_start_posts_signed_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=START_RESPONSE)

    client = httpx.AsyncClient(
        base_url="https://bili.test", transport=httpx.MockTransport(handler)
    )
    api = BilibiliOpenApi(_settings(), client=client)

    data = await api.start("anchor-code")
    await api.aclose()

    assert data["game_info"]["game_id"] == "game-1"
    assert seen[0].url.path == "/v2/app/start"
    assert json.loads(seen[0].content) == {"code": "anchor-code", "app_id": 1234}
    assert seen[0].headers["x-bili-accesskeyid"] == "bili-key"


@pytest.mark.asyncio
async def test_open_api_error_code_raises() -> None:
    client = httpx.AsyncClient(
        base_url="https://bili.test",
        transport=httpx.MockTransport(
            lambda r: httpx.Response(200, json={"code": 7001, "message": "busy"})
        ),
    )
    api = BilibiliOpenApi(_settings(), client=client)

    with pytest.raises(BilibiliApiError, match="7001"):
        await api.start("anchor-code")
    await api.aclose()


@pytest.mark.asyncio
async def test_feed_connects_authenticates_and_yields_messages() -> None:
    api = FakeApi()
    ws = FakeWebsocket()
    dialled: list[str] = []

    async def connect(url: str, **kwargs) -> FakeWebsocket:
        dialled.append(url)
        return ws

    feed = BilibiliLiveFeed(_settings(), api=api, ws_connect=connect)  # type: ignore[arg-type]
    info = await feed.connect()

    assert info.game_id == "game-1"
    assert info.room_id == 5566
    assert info.anchor_name == "anchor"
    assert dialled == ["wss://ws.test/sub"]
    auth_packet = decode_packets(ws.sent[0])[0]
    assert auth_packet.operation == OP_AUTH
    assert auth_packet.body == b'{"key":"auth"}'

    await ws.frames.put(encode_packet(OP_AUTH_REPLY, b'{"code":0}'))
    await ws.frames.put("text frames are ignored")
    await ws.frames.put(
        _event_frame(
            {"cmd": "LIVE_OPEN_PLATFORM_DM", "data": {"msg": "hi", "uname": "v"}},
            {"cmd": "LIVE_OPEN_PLATFORM_SEND_GIFT", "data": {"gift_name": "flower"}},
        )
    )
    first = await asyncio.wait_for(feed.receive(), timeout=1.0)
    second = await asyncio.wait_for(feed.receive(), timeout=1.0)

    assert first is not None and first.cmd == "LIVE_OPEN_PLATFORM_DM"
    assert first.data["msg"] == "hi"
    assert second is not None and second.data == {"gift_name": "flower"}

    await ws.frames.put(None)
    assert await asyncio.wait_for(feed.receive(), timeout=1.0) is None

    await feed.close()
    await feed.close()
    assert ws.closed
    assert ("end", "game-1") in api.calls
    assert api.closed


@pytest.mark.asyncio
async def test_feed_requires_id_code() -> None:
    api = FakeApi()
    feed = BilibiliLiveFeed(_settings(id_code=None), api=api)  # type: ignore[arg-type]

    with pytest.raises(LiveFeedError, match="id_code"):
        await feed.connect()
    await feed.close()
    assert api.calls == []
    assert api.closed


@pytest.mark.asyncio
async def test_feed_wraps_websocket_failures() -> None:
    async def refuse(url: str, **kwargs):
        raise OSError("connection refused")

    api = FakeApi()
    feed = BilibiliLiveFeed(_settings(), api=api, ws_connect=refuse)  # type: ignore[arg-type]

    with pytest.raises(LiveFeedError, match="websocket"):
        await feed.connect()
    await feed.close()
    assert ("end", "game-1") in api.calls


@pytest.mark.asyncio
async def test_feed_sends_periodic_heartbeats() -> None:
    api = FakeApi()
    ws = FakeWebsocket()

    async def connect(url: str, **kwargs) -> FakeWebsocket:
        return ws

    feed = BilibiliLiveFeed(
        _settings(),
        api=api,  # type: ignore[arg-type]
        ws_connect=connect,
        ws_heartbeat_seconds=0.01,
    )
    await feed.connect()
    await asyncio.sleep(0.05)
    await feed.close()

    heartbeats = [frame for frame in ws.sent[1:] if decode_packets(frame)[0].operation == 2]
    assert heartbeats
