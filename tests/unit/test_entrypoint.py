from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from vutber.core.auth import AuthGuard
from vutber.core.config import ConfigService
from vutber.core.contracts import ModuleConfig
from vutber.core.orchestrator import Orchestrator
from vutber.entrypoint import build_runtime, main, parse_args
from vutber.live.bilibili import BilibiliLiveFeed
from vutber.live.feed import LiveMessage, LiveSessionInfo
from vutber.modules.gateway.http_api import HttpGateway


class _Feed:
    async def connect(self) -> LiveSessionInfo:
        return LiveSessionInfo(game_id="g")

    async def receive(self) -> LiveMessage | None:
        return None

    async def close(self) -> None:
        return None


class _FakeServer:
    def __init__(self, config: Any) -> None:
        self.config = config
        self.should_exit = False
        self.served = False

    async def serve(self) -> None:
        self.served = True
        while not self.should_exit:
            await asyncio.sleep(0.005)


def test_parse_args_overrides() -> None:
    args = parse_args(["--config-dir", "cfg", "--port", "9999", "--log-level", "debug"])
    assert args.config_dir == Path("cfg")
    assert args.port == 9999
    assert args.host is None
    assert args.log_level == "debug"


def test_main_returns_2_on_config_error(tmp_path: Path) -> None:
    assert main(["--config-dir", str(tmp_path / "missing")]) == 2


@pytest.mark.asyncio
async def test_build_runtime_wires_components(sample_config_service: ConfigService) -> None:
    runtime = await build_runtime(
        sample_config_service.snapshot, feed_factory=_Feed, serve_api=False
    )
    orchestrator = runtime.orchestrator
    subscriber = orchestrator.bus.subscribe()

    await orchestrator.start()
    ready = await asyncio.wait_for(subscriber.get(), timeout=1.0)
    await runtime.aclose()

    assert orchestrator.live is not None
    assert runtime.gateway.app is not None
    enabled = {status.intent: status.enabled for status in ready.capabilities}
    assert enabled == {"conversation": True, "image": True, "music": True, "video": False}
    assert runtime.http.is_closed


@pytest.mark.asyncio
async def test_default_live_factory_builds_bilibili_feed(
    sample_config_service: ConfigService,
) -> None:
    runtime = await build_runtime(sample_config_service.snapshot, serve_api=False)
    live = runtime.orchestrator.live
    assert live is not None
    feed = live._feed_factory()
    assert isinstance(feed, BilibiliLiveFeed)
    await feed.close()
    await runtime.http.aclose()


@pytest.mark.asyncio
async def test_gateway_runs_and_stops_uvicorn_server() -> None:
    captured: dict[str, Any] = {}
    servers: list[_FakeServer] = []

    def config_factory(**kwargs: Any) -> dict[str, Any]:
        captured.update(kwargs)
        return kwargs

    def server_factory(config: Any) -> _FakeServer:
        server = _FakeServer(config)
        servers.append(server)
        return server

    orchestrator = Orchestrator()
    gateway = HttpGateway(
        orchestrator=orchestrator,
        auth=AuthGuard(access_key="a", secret_key="b"),
        config_factory=config_factory,  # type: ignore[arg-type]
        server_factory=server_factory,  # type: ignore[arg-type]
    )
    await orchestrator.add_module(gateway, ModuleConfig(options={"host": "0.0.0.0", "port": 9555}))

    await orchestrator.start()
    await asyncio.sleep(0.02)
    health = await gateway.health()
    await orchestrator.stop()

    assert captured["host"] == "0.0.0.0"
    assert captured["port"] == 9555
    assert captured["app"] is gateway.app
    assert servers[0].served
    assert servers[0].should_exit
    assert health.status == "healthy"
