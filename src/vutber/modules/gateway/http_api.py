"""
FastAPI boundary exposing the event stream and the command endpoint.

``GET /events`` streams every event published after the listener connected
as Server-Sent Events. ``POST /command`` hands a validated command to the
orchestrator and answers ``202`` once it is accepted. Both require a signed
query string checked by the `AuthGuard`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ...core.auth import AuthError, AuthGuard
from ...core.contracts import (
    BaseEvent,
    BaseModule,
    Command,
    CommandRequest,
    HealthStatus,
    ModuleConfig,
    SignaturePayload,
)
from ...core.orchestrator import LiveUnavailable, Orchestrator
from ...live.manager import SessionAlreadyActive

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: BaseEvent) -> str:
    """Encode an event as one SSE message."""
    kind = getattr(event, "kind", "message")
    return f"event: {kind}\ndata: {event.model_dump_json()}\n\n"


class HttpGateway(BaseModule):
    """Serve the signed HTTP surface with uvicorn."""

    name = "modules.gateway.http_api"

    def __init__(
        self,
        *,
        orchestrator: Orchestrator,
        auth: AuthGuard,
        config_factory: Callable[..., uvicorn.Config] | None = None,
        server_factory: Callable[[uvicorn.Config], uvicorn.Server] | None = None,
    ) -> None:
        super().__init__()
        self._orchestrator = orchestrator
        self._auth = auth
        self._host = "127.0.0.1"
        self._port = 9000
        self._serve_api = True
        self._keepalive_seconds = 15.0
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self._config_factory = config_factory or uvicorn.Config
        self._server_factory = server_factory or uvicorn.Server

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._host = options.get("host", self._host)
        self._port = int(options.get("port", self._port))
        self._serve_api = bool(options.get("serve_api", self._serve_api))
        self._keepalive_seconds = float(options.get("keepalive_seconds", self._keepalive_seconds))
        if self._keepalive_seconds <= 0:
            raise ValueError("keepalive_seconds must be positive")

    async def start(self) -> None:
        self._app = self._build_app()
        if not self._serve_api:
            logger.info("HttpGateway running in embedded-only mode (no HTTP server).")
            return
        config = self._config_factory(
            app=self._app,
            host=self._host,
            port=self._port,
            loop="asyncio",
            lifespan="on",
            log_level="info",
        )
        self._server = self._server_factory(config)
        self._server_task = asyncio.create_task(self._server.serve(), name="vutber-http")
        logger.info("HttpGateway listening on http://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        if self._server_task:
            self._server.should_exit = True  # type: ignore[union-attr]
            await asyncio.wait([self._server_task], timeout=5)
            self._server_task = None
        self._server = None

    async def health(self) -> HealthStatus:
        stats = self.bus.stats()
        status = "healthy" if self._app is not None else "degraded"
        return HealthStatus(status=status, details={"subscribers": stats.subscriber_count})

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("HttpGateway has not been started or configured yet.")
        return self._app

    def _authenticate(
        self,
        access_key: str | None,
        timestamp: str | None,
        nonce: str | None,
        signature: str | None,
    ) -> None:
        try:
            payload = SignaturePayload(
                access_key=access_key or "",
                timestamp=timestamp,  # type: ignore[arg-type]
                nonce=nonce or "",
                signature=signature or "",
            )
        except ValidationError as exc:
            raise HTTPException(status_code=401, detail="missing or invalid signature") from exc
        try:
            self._auth.verify(
                payload.access_key, payload.timestamp, payload.nonce, payload.signature
            )
        except AuthError as exc:
            logger.info("Rejected request: %s", exc.__class__.__name__)
            raise HTTPException(status_code=401, detail=str(exc)) from exc

    async def _stream(self) -> AsyncIterator[str]:
        subscriber = self.bus.subscribe()
        logger.info("Event stream %d opened", subscriber.id)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(
                        subscriber.get(), timeout=self._keepalive_seconds
                    )
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if event is None:
                    return
                yield format_sse(event)
        finally:
            self.bus.unsubscribe(subscriber)
            logger.info("Event stream %d closed", subscriber.id)

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Vutber Gateway", version="0.1.0")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

        @app.get("/health")
        async def health() -> dict[str, Any]:
            live = self._orchestrator.live
            return {
                "status": "ok",
                "bus": self.bus.stats().model_dump(),
                "live": live.status().model_dump(mode="json") if live else None,
            }

        @app.get("/events")
        async def events(
            access_key: str | None = Query(default=None),
            timestamp: str | None = Query(default=None),
            nonce: str | None = Query(default=None),
            signature: str | None = Query(default=None),
        ) -> StreamingResponse:
            self._authenticate(access_key, timestamp, nonce, signature)
            return StreamingResponse(
                self._stream(), media_type="text/event-stream", headers=SSE_HEADERS
            )

        @app.post("/command", status_code=202)
        async def command(
            request: Request,
            access_key: str | None = Query(default=None),
            timestamp: str | None = Query(default=None),
            nonce: str | None = Query(default=None),
            signature: str | None = Query(default=None),
        ) -> JSONResponse:
            self._authenticate(access_key, timestamp, nonce, signature)
            body = await request.body()
            try:
                parsed = CommandRequest.model_validate_json(body)
                validated = Command.from_request(parsed)
            except (ValidationError, ValueError) as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            try:
                receipt = await self._orchestrator.handle(validated)
            except SessionAlreadyActive as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            except LiveUnavailable as exc:
                raise HTTPException(status_code=503, detail=str(exc)) from exc
            return JSONResponse(
                status_code=202, content=receipt.model_dump(mode="json", exclude_none=True)
            )

        return app


__all__ = ["HttpGateway", "format_sse"]
