"""
Route inbound Zigbee2MQTT messages into the device registry.

Snapshots on ``<base>/bridge/devices`` reconcile the registry; messages on
``<base>/<device>`` merge partial state and trigger fan-out. Malformed
payloads are counted, reported on the failure topic and otherwise dropped;
a state message with a mistyped field loses only that field.
"""

from __future__ import annotations

import logging
from collections import Counter

from ...core.bus import Subscription
from ...core.contracts import (
    BaseModule,
    BusMessage,
    DeviceStateChanged,
    HealthStatus,
    IngestionFailure,
    ModuleConfig,
    RegistryStats,
)
from ...devices.descriptors import parse_snapshot
from ...devices.errors import ParseFailure
from ...devices.records import parse_state
from ...devices.registry import DeviceRegistry
from ...devices.topics import BridgeTopics

logger = logging.getLogger(__name__)


class EventIngestion(BaseModule):
    """Apply bus messages to the registry and announce the resulting changes."""

    name = "modules.process.event_ingestion"

    def __init__(self, *, registry: DeviceRegistry | None = None) -> None:
        super().__init__()
        self.registry = registry or DeviceRegistry()
        self._topics = BridgeTopics()
        self._input_topic = "mqtt.inbound"
        self._state_topic = "devices.state.changed"
        self._failure_topic = "status.ingestion.failure"
        self._stats_topic = "status.registry"
        self._prune_missing = False
        self._subscription: Subscription | None = None
        self._failures: Counter[str] = Counter()
        self._snapshots_total = 0
        self._updates_total = 0

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._topics = BridgeTopics(options.get("base_topic", self._topics.base))
        self._input_topic = options.get("input_topic", self._input_topic)
        self._state_topic = options.get("state_topic", self._state_topic)
        self._failure_topic = options.get("failure_topic", self._failure_topic)
        self._stats_topic = options.get("stats_topic", self._stats_topic)
        self._prune_missing = bool(options.get("prune_missing", self._prune_missing))

    async def start(self) -> None:
        self._subscription = self.bus.subscribe(self._input_topic, self._handle_message)
        logger.info(
            "EventIngestion listening on %s for %s", self._input_topic, self._topics.subscription
        )
        logger.info("Waiting for device registry on %s...", self._topics.devices_snapshot)

    async def stop(self) -> None:
        if self._subscription:
            self.bus.unsubscribe(self._subscription)
            self._subscription = None

    @property
    def parse_failures(self) -> dict[str, int]:
        return dict(self._failures)

    async def health(self) -> HealthStatus:
        return HealthStatus(
            status="healthy" if self._snapshots_total else "degraded",
            details={
                "devices": len(self.registry),
                "snapshots_total": self._snapshots_total,
                "updates_total": self._updates_total,
                "parse_failures": self.parse_failures,
                "prune_missing": self._prune_missing,
            },
        )

    async def _handle_message(self, topic: str, payload: BusMessage) -> None:
        if not isinstance(payload, BusMessage):
            logger.debug("Ignoring non bus message payload on %s", topic)
            return
        if payload.topic == self._topics.devices_snapshot:
            await self._ingest_snapshot(payload)
            return
        device_id = self._topics.device_for_state_topic(payload.topic)
        if device_id is not None:
            await self._ingest_state(device_id, payload)

    async def _ingest_snapshot(self, message: BusMessage) -> None:
        try:
            descriptors = parse_snapshot(message.payload)
        except ParseFailure as exc:
            await self._report_failure("snapshot", message.topic, str(exc))
            return
        result = self.registry.replace_from_snapshot(
            descriptors, prune_missing=self._prune_missing
        )
        self._snapshots_total += 1
        await self.bus.publish(
            self._stats_topic,
            RegistryStats(
                device_count=len(self.registry), added=result.added, removed=result.removed
            ),
        )

    async def _ingest_state(self, device_id: str, message: BusMessage) -> None:
        if device_id not in self.registry:
            return
        try:
            parsed = parse_state(message.payload)
        except ParseFailure as exc:
            await self._report_failure("state", message.topic, str(exc))
            return
        if parsed.rejected:
            await self._report_failure(
                "field",
                message.topic,
                f"Dropped fields with unexpected values: {', '.join(parsed.rejected)}",
            )
        record = self.registry.merge_state(device_id, parsed.attributes)
        if record is None:
            return
        self._updates_total += 1
        await self.bus.publish(
            self._state_topic, DeviceStateChanged(device_id=record.id, state=record.as_state())
        )

    async def _report_failure(self, source: str, topic: str, reason: str) -> None:
        self._failures[source] += 1
        logger.warning("Discarding malformed %s data on %s: %s", source, topic, reason)
        await self.bus.publish(
            self._failure_topic, IngestionFailure(source=source, topic=topic, reason=reason)
        )


__all__ = ["EventIngestion"]
