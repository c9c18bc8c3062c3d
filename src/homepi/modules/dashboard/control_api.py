"""
FastAPI-powered request/response surface for the device registry.

Queries read the registry directly. Commands, renames, removals and pairing
are published towards Zigbee2MQTT as unacknowledged requests, so responses
only confirm that a request was sent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ...core.contracts import BaseModule, DeviceStateChanged, ModuleConfig, OutboundMessage
from ...devices.commands import CommandTranslator, DeviceCommand
from ...devices.errors import DeviceNotFoundError, InvalidArgumentError
from ...devices.registry import DeviceRegistry
from ...devices.topics import BridgeTopics

logger = logging.getLogger(__name__)


class RenameRequest(BaseModel):
    """Request body for renaming a device."""

    name: str | None = Field(default=None, description="New human readable name.")


class ControlApi(BaseModule):
    """Expose HTTP endpoints over the registry and publish network requests."""

    name = "modules.dashboard.control_api"

    def __init__(
        self,
        *,
        registry: DeviceRegistry | None = None,
        config_factory: Callable[..., uvicorn.Config] | None = None,
        server_factory: Callable[[uvicorn.Config], uvicorn.Server] | None = None,
    ) -> None:
        super().__init__()
        self.registry = registry or DeviceRegistry()
        self._host = "127.0.0.1"
        self._port = 3000
        self._serve_api = True
        self._topics = BridgeTopics()
        self._outbound_topic = "mqtt.outbound"
        self._state_topic = "devices.state.changed"
        self._pairing_seconds = 120
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self._config_factory = config_factory or uvicorn.Config
        self._server_factory = server_factory or uvicorn.Server
        self._tls_enabled = False
        self._tls_certfile: str | None = None
        self._tls_keyfile: str | None = None

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._host = options.get("host", self._host)
        self._port = int(options.get("port", self._port))
        self._serve_api = bool(options.get("serve_api", self._serve_api))
        self._topics = BridgeTopics(options.get("base_topic", self._topics.base))
        self._outbound_topic = options.get("outbound_topic", self._outbound_topic)
        self._state_topic = options.get("state_topic", self._state_topic)
        self._pairing_seconds = int(options.get("pairing_seconds", self._pairing_seconds))
        self._tls_enabled = bool(options.get("tls_enabled", self._tls_enabled))
        self._tls_certfile = options.get("tls_certfile", self._tls_certfile)
        self._tls_keyfile = options.get("tls_keyfile", self._tls_keyfile)
        if self._tls_enabled and (not self._tls_certfile or not self._tls_keyfile):
            raise ValueError("TLS enabled for ControlApi but certfile/keyfile missing.")

    async def start(self) -> None:
        self._app = self._build_app()
        if not self._serve_api:
            logger.info("ControlApi running in embedded-only mode (no HTTP server).")
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
        scheme = "https" if self._tls_enabled else "http"
        logger.info("HomePi API running on %s://%s:%s", scheme, self._host, self._port)

    async def stop(self) -> None:
        if self._server_task:
            self._server.should_exit = True  # type: ignore[union-attr]
            await asyncio.wait([self._server_task], timeout=1)
            self._server_task = None
        self._server = None

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("ControlApi has not been started or configured yet.")
        return self._app

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="HomePi API", version="0.1.0")
        translator = CommandTranslator(self.registry, self._topics, self._publish_outbound)

        @app.get("/health")
        async def health() -> dict[str, Any]:
            return {"status": "ok", "devices": len(self.registry)}

        @app.get("/devices")
        async def list_devices() -> list[dict[str, Any]]:
            return [record.as_state() for record in self.registry.list()]

        @app.get("/devices/{device_id}")
        async def get_device(device_id: str) -> dict[str, Any]:
            record = self.registry.get(device_id)
            if record is None:
                raise HTTPException(status_code=404, detail="Device not found")
            return record.as_state()

        @app.post("/devices/{device_id}/command", status_code=202)
        async def send_command(device_id: str, command: DeviceCommand) -> dict[str, Any]:
            try:
                message = await translator.send(device_id, command)
            except DeviceNotFoundError as exc:
                raise HTTPException(status_code=404, detail="Device not found") from exc
            except InvalidArgumentError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return {"status": "sent", "command": message.payload}

        @app.post("/devices/{device_id}/rename", status_code=202)
        async def rename_device(device_id: str, request: RenameRequest) -> dict[str, Any]:
            try:
                record = self.registry.rename(device_id, request.name)
            except DeviceNotFoundError as exc:
                raise HTTPException(status_code=404, detail="Device not found") from exc
            except InvalidArgumentError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            await self._publish_outbound(
                OutboundMessage(
                    topic=self._topics.rename_request,
                    payload={"from": device_id, "to": record.id},
                )
            )
            await self.bus.publish(
                self._state_topic,
                DeviceStateChanged(
                    device_id=record.id, state=record.as_state(), previous_id=device_id
                ),
            )
            return {"status": "sent", "new_id": record.id, "device": record.as_state()}

        @app.delete("/devices/{device_id}", status_code=202)
        async def remove_device(device_id: str) -> dict[str, str]:
            try:
                self.registry.remove(device_id)
            except DeviceNotFoundError as exc:
                raise HTTPException(status_code=404, detail="Device not found") from exc
            await self._publish_outbound(
                OutboundMessage(
                    topic=self._topics.remove_request,
                    payload={"id": device_id, "force": False},
                )
            )
            return {"status": "sent"}

        @app.post("/pairing/start", status_code=202)
        async def start_pairing() -> dict[str, Any]:
            await self._publish_outbound(
                OutboundMessage(
                    topic=self._topics.permit_join_request,
                    payload={"value": True, "time": self._pairing_seconds},
                )
            )
            return {"status": "sent", "duration": self._pairing_seconds}

        @app.post("/pairing/stop", status_code=202)
        async def stop_pairing() -> dict[str, str]:
            await self._publish_outbound(
                OutboundMessage(topic=self._topics.permit_join_request, payload={"value": False})
            )
            return {"status": "sent"}

        return app

    async def _publish_outbound(self, message: OutboundMessage) -> None:
        await self.bus.publish(self._outbound_topic, message)


__all__ = ["ControlApi", "RenameRequest"]
