"""
Realtime push channel that fans device changes out to WebSocket observers.

Every observer has its own bounded send queue drained by a dedicated task, so
messages reach each observer in publish order and a slow observer never holds
up the others. An observer that falls ``max_pending`` messages behind, closes
or fails a send is dropped; nothing is retried and there is no history replay
on connect.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ...core.bus import Subscription
from ...core.contracts import BaseModule, DeviceStateChanged, HealthStatus, ModuleConfig

logger = logging.getLogger(__name__)


class Observer(Protocol):
    """The parts of a WebSocket the fan-out relies on."""

    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...


def _is_open(observer: Observer) -> bool:
    return (
        observer.client_state == WebSocketState.CONNECTED
        and observer.application_state == WebSocketState.CONNECTED
    )


@dataclass(slots=True, eq=False)
class _ObserverChannel:
    observer: Observer
    queue: asyncio.Queue[str]
    task: asyncio.Task[None] | None = None


class WebsocketGateway(BaseModule):
    """Push every ``DeviceStateChanged`` to the connected observers."""

    name = "modules.dashboard.websocket_gateway"

    def __init__(
        self,
        *,
        config_factory: Callable[..., uvicorn.Config] | None = None,
        server_factory: Callable[[uvicorn.Config], uvicorn.Server] | None = None,
    ) -> None:
        super().__init__()
        self._host = "127.0.0.1"
        self._port = 3001
        self._serve_http = True
        self._state_topic = "devices.state.changed"
        self._max_pending = 16
        self._tls_enabled = False
        self._tls_certfile: str | None = None
        self._tls_keyfile: str | None = None
        self._channels: dict[Observer, _ObserverChannel] = {}
        self._subscription: Subscription | None = None
        self._app: FastAPI | None = None
        self._config_factory = config_factory or uvicorn.Config
        self._server_factory = server_factory or uvicorn.Server
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self._delivered_total = 0
        self._skipped_total = 0

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._host = options.get("host", self._host)
        self._port = int(options.get("port", self._port))
        self._serve_http = bool(options.get("serve_http", self._serve_http))
        self._state_topic = options.get("state_topic", self._state_topic)
        self._max_pending = int(options.get("max_pending", self._max_pending))
        if self._max_pending < 1:
            raise ValueError("max_pending must be at least 1.")
        self._tls_enabled = bool(options.get("tls_enabled", self._tls_enabled))
        self._tls_certfile = options.get("tls_certfile", self._tls_certfile)
        self._tls_keyfile = options.get("tls_keyfile", self._tls_keyfile)
        if self._tls_enabled and (not self._tls_certfile or not self._tls_keyfile):
            raise ValueError("TLS enabled for WebsocketGateway but certfile/keyfile missing.")

    async def start(self) -> None:
        self._app = self._build_app()
        self._subscription = self.bus.subscribe(self._state_topic, self._handle_state_changed)
        if not self._serve_http:
            logger.info("WebsocketGateway running in embedded mode (no HTTP server).")
            return
        ssl_kwargs: dict[str, Any] = {}
        if self._tls_enabled:
            ssl_kwargs["ssl_certfile"] = self._tls_certfile
            ssl_kwargs["ssl_keyfile"] = self._tls_keyfile
        config = self._config_factory(
            app=self._app,
            host=self._host,
            port=self._port,
            loop="asyncio",
            lifespan="on",
            log_level="info",
            **ssl_kwargs,
        )
        self._server = self._server_factory(config)
        self._server_task = asyncio.create_task(self._server.serve())
        scheme = "wss" if self._tls_enabled else "ws"
        logger.info("WebsocketGateway listening on %s://%s:%s/ws", scheme, self._host, self._port)

    async def stop(self) -> None:
        if self._subscription:
            self.bus.unsubscribe(self._subscription)
            self._subscription = None
        if self._server_task:
            self._server.should_exit = True  # type: ignore[union-attr]
            await asyncio.wait([self._server_task], timeout=1)
            self._server_task = None
        self._server = None
        self._app = None
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            if channel.task is not None:
                channel.task.cancel()
        for channel in channels:
            if channel.task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await channel.task

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("WebsocketGateway has not been started.")
        return self._app

    @property
    def observer_count(self) -> int:
        return len(self._channels)

    def attach(self, observer: Observer) -> None:
        """Register an observer and start its sender task."""
        if observer in self._channels:
            return
        channel = _ObserverChannel(
            observer=observer, queue=asyncio.Queue(maxsize=self._max_pending)
        )
        channel.task = asyncio.create_task(self._drain(channel), name="homepi-ws-observer")
        self._channels[observer] = channel

    def detach(self, observer: Observer) -> None:
        channel = self._channels.pop(observer, None)
        if channel is None or channel.task is None:
            return
        if channel.task is not asyncio.current_task():
            channel.task.cancel()

    async def health(self) -> HealthStatus:
        return HealthStatus(
            status="healthy",
            details={
                "observers": len(self._channels),
                "max_pending": self._max_pending,
                "delivered_total": self._delivered_total,
                "skipped_total": self._skipped_total,
            },
        )

    async def _handle_state_changed(self, topic: str, payload: DeviceStateChanged) -> None:
        if not isinstance(payload, DeviceStateChanged):
            logger.debug("Ignoring non state-change payload on %s", topic)
            return
        # No await before the enqueue: handler tasks for consecutive events
        # run in publish order, so per-observer queues keep that order.
        self.broadcast(json.dumps({"deviceId": payload.device_id, "state": payload.state}))

    def broadcast(self, message: str) -> int:
        """Queue ``message`` for every open observer; return how many accepted it."""
        queued = 0
        for channel in list(self._channels.values()):
            if not _is_open(channel.observer):
                self._drop(channel.observer, "closed")
                continue
            try:
                channel.queue.put_nowait(message)
            except asyncio.QueueFull:
                self._drop(channel.observer, f"more than {self._max_pending} messages behind")
                continue
            queued += 1
        return queued

    def _drop(self, observer: Observer, reason: str) -> None:
        self._skipped_total += 1
        logger.info("Dropping websocket observer: %s", reason)
        self.detach(observer)

    async def _drain(self, channel: _ObserverChannel) -> None:
        observer = channel.observer
        while True:
            message = await channel.queue.get()
            if not _is_open(observer):
                self._drop(observer, "closed")
                return
            try:
                await observer.send_text(message)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                self._drop(observer, f"send failed ({exc})")
                return
            self._delivered_total += 1

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="HomePi Realtime Gateway", version="0.1.0")

        @app.get("/health")
        async def health() -> dict[str, Any]:
            return {"status": "ok", "observers": len(self._channels)}

        @app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            self.attach(websocket)
            logger.info("Websocket client connected (%d total).", len(self._channels))
            try:
                # Inbound frames (text or binary) are ignored; reading only
                # detects the disconnect.
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        logger.info("Websocket client disconnected.")
                        break
            except WebSocketDisconnect:
                logger.info("Websocket client disconnected.")
            finally:
                self.detach(websocket)

        return app


__all__ = ["Observer", "WebsocketGateway"]
