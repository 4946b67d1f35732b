"""
CLI entrypoint that boots the gateway.

Loads the Dynaconf configuration, wires the event bus, auth guard, intent
router, capabilities, live session manager and HTTP gateway, then serves
until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx

from .artifacts import ArtifactWriter
from .capabilities.registry import build_capabilities, build_intent_classifier
from .core.auth import AuthGuard
from .core.bus import EventBus
from .core.config import ConfigError, ConfigService, ConfigSnapshot
from .core.contracts import ModuleConfig
from .core.orchestrator import Orchestrator
from .live.feed import LiveFeedFactory
from .live.manager import LiveSessionManager
from .modules.gateway.http_api import HttpGateway

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME = "vutber.log"


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


@dataclass
class Runtime:
    """Components assembled from one configuration snapshot."""

    orchestrator: Orchestrator
    gateway: HttpGateway
    http: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.orchestrator.stop()
        await self.http.aclose()


def _bilibili_factory(snapshot: ConfigSnapshot) -> LiveFeedFactory | None:
    settings = snapshot.live.bilibili
    if settings is None:
        return None
    from .live.bilibili import BilibiliLiveFeed

    return lambda: BilibiliLiveFeed(settings)


async def build_runtime(
    snapshot: ConfigSnapshot,
    *,
    http: httpx.AsyncClient | None = None,
    feed_factory: LiveFeedFactory | None = None,
    serve_api: bool = True,
) -> Runtime:
    """Wire every component for ``snapshot``; raises `ConfigError` on bad provider routes."""
    http = http or httpx.AsyncClient(timeout=120.0)
    bus = EventBus(queue_size=snapshot.server.subscriber_queue_size)
    auth = AuthGuard(
        access_key=snapshot.auth.access_key,
        secret_key=snapshot.auth.secret_key,
        signature_ttl_seconds=snapshot.auth.signature_ttl_seconds,
    )

    live: LiveSessionManager | None = None
    factory = feed_factory or _bilibili_factory(snapshot)
    if factory is not None:
        live = LiveSessionManager(
            bus=bus,
            feed_factory=factory,
            stop_timeout_seconds=snapshot.live.stop_timeout_seconds,
        )
    else:
        LOGGER.info("Live feed not configured; live commands will answer 503.")

    orchestrator = Orchestrator(
        bus=bus,
        classifier=build_intent_classifier(snapshot, http=http),
        capabilities=build_capabilities(snapshot, http=http),
        artifacts=ArtifactWriter(snapshot.artifacts_dir),
        live=live,
    )
    gateway = HttpGateway(orchestrator=orchestrator, auth=auth)
    await orchestrator.add_module(
        gateway,
        ModuleConfig(
            options={
                "host": snapshot.server.host,
                "port": snapshot.server.port,
                "keepalive_seconds": snapshot.server.keepalive_seconds,
                "serve_api": serve_api,
            }
        ),
    )
    return Runtime(orchestrator=orchestrator, gateway=gateway, http=http)


async def run_gateway(
    *,
    config_dir: Path | None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Load configuration, start the gateway and run until interrupted."""

    snapshot = ConfigService(config_dir=config_dir).snapshot
    if host is not None:
        snapshot.server.host = host
    if port is not None:
        snapshot.server.port = port
    _ensure_rotating_file_handler(snapshot.artifacts_dir / LOG_FILENAME)

    runtime = await build_runtime(snapshot)
    if snapshot.server.host not in ("127.0.0.1", "localhost", "::1"):
        LOGGER.warning(
            "Gateway is bound to %s without TLS. Consider using a reverse proxy.",
            snapshot.server.host,
        )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    await runtime.orchestrator.start()
    LOGGER.info("Vutber gateway running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.aclose()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s, beginning graceful shutdown.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_shutdown, sig_name or str(signum)
                ),
            )


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Vutber realtime command/event gateway.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    parser.add_argument("--host", default=None, help="Override server.host.")
    parser.add_argument("--port", type=int, default=None, help="Override server.port.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        asyncio.run(run_gateway(config_dir=args.config_dir, host=args.host, port=args.port))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("Vutber gateway crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["Runtime", "build_runtime", "main", "run_gateway"]
