"""
MQTT connection to the Zigbee2MQTT broker.

Every message under the base topic is forwarded onto the internal bus as a
``BusMessage``; ``OutboundMessage`` payloads published internally are sent
to the broker as JSON. Publishes are fire-and-forget.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

import aiomqtt

from ...core.bus import Subscription
from ...core.contracts import BaseModule, BusMessage, HealthStatus, ModuleConfig, OutboundMessage
from ...devices.topics import BridgeTopics

logger = logging.getLogger(__name__)


def _as_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes | bytearray):
        return bytes(payload)
    return str(payload).encode("utf-8")


class MqttBridge(BaseModule):
    """Relay between the MQTT broker and the internal event bus."""

    name = "modules.bridge.mqtt"

    def __init__(self, *, client_factory: Callable[..., aiomqtt.Client] | None = None) -> None:
        super().__init__()
        self._client_factory = client_factory or aiomqtt.Client
        self._host = "localhost"
        self._port = 1883
        self._username: str | None = None
        self._password: str | None = None
        self._client_id: str | None = None
        self._topics = BridgeTopics()
        self._reconnect_delay = 5.0
        self._inbound_topic = "mqtt.inbound"
        self._outbound_topic = "mqtt.outbound"
        self._client: aiomqtt.Client | None = None
        self._task: asyncio.Task[None] | None = None
        self._subscription: Subscription | None = None
        self._received_total = 0
        self._published_total = 0
        self._dropped_total = 0

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._host = options.get("host", self._host)
        self._port = int(options.get("port", self._port))
        self._username = options.get("username", self._username)
        self._password = options.get("password", self._password)
        self._client_id = options.get("client_id", self._client_id)
        self._topics = BridgeTopics(options.get("base_topic", self._topics.base))
        self._reconnect_delay = float(
            options.get("reconnect_delay_seconds", self._reconnect_delay)
        )
        self._inbound_topic = options.get("inbound_topic", self._inbound_topic)
        self._outbound_topic = options.get("outbound_topic", self._outbound_topic)

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        self._subscription = self.bus.subscribe(self._outbound_topic, self._handle_outbound)
        self._task = asyncio.create_task(self._run(), name="homepi-mqtt")
        logger.info("MqttBridge connecting to %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._subscription:
            self.bus.unsubscribe(self._subscription)
            self._subscription = None
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._client = None

    async def health(self) -> HealthStatus:
        return HealthStatus(
            status="healthy" if self.connected else "degraded",
            details={
                "connected": self.connected,
                "broker": f"{self._host}:{self._port}",
                "received_total": self._received_total,
                "published_total": self._published_total,
                "dropped_total": self._dropped_total,
            },
        )

    async def _run(self) -> None:
        while True:
            try:
                async with self._client_factory(
                    hostname=self._host,
                    port=self._port,
                    username=self._username,
                    password=self._password,
                    identifier=self._client_id,
                ) as client:
                    await client.subscribe(self._topics.subscription)
                    self._client = client
                    logger.info(
                        "Connected to MQTT broker; subscribed to %s", self._topics.subscription
                    )
                    async for message in client.messages:
                        self._received_total += 1
                        await self.bus.publish(
                            self._inbound_topic,
                            BusMessage(topic=str(message.topic), payload=_as_bytes(message.payload)),
                        )
            except aiomqtt.MqttError as exc:
                logger.warning(
                    "MQTT connection error (%s); reconnecting in %.1fs", exc, self._reconnect_delay
                )
            finally:
                self._client = None
            await asyncio.sleep(self._reconnect_delay)

    async def _handle_outbound(self, topic: str, payload: OutboundMessage) -> None:
        if not isinstance(payload, OutboundMessage):
            logger.debug("Ignoring non outbound payload on %s", topic)
            return
        client = self._client
        if client is None:
            self._dropped_total += 1
            logger.warning("MQTT not connected; dropping message for %s", payload.topic)
            return
        try:
            await client.publish(payload.topic, json.dumps(payload.payload))
        except aiomqtt.MqttError as exc:
            self._dropped_total += 1
            logger.warning("Failed to publish to %s: %s", payload.topic, exc)
            return
        self._published_total += 1
        logger.debug("Published to %s: %s", payload.topic, payload.payload)


__all__ = ["MqttBridge"]
