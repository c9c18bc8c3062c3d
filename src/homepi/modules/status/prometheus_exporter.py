"""
Expose internal metrics via Prometheus.

Bus telemetry is rendered as gauges, discarded inbound messages as a counter
labelled by message kind, and the registry size as a gauge.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

from ...core.bus import Subscription
from ...core.contracts import (
    BaseModule,
    BasePayload,
    BusStatus,
    IngestionFailure,
    ModuleConfig,
    RegistryStats,
)

logger = logging.getLogger(__name__)


def _default_server_factory(
    port: int, addr: str, registry: CollectorRegistry
) -> object:  # pragma: no cover - thin wrapper
    return start_http_server(port=port, addr=addr, registry=registry)


class PrometheusExporter(BaseModule):
    """Status module that exports bridge telemetry via HTTP."""

    name = "modules.status.prometheus_exporter"

    def __init__(
        self,
        *,
        registry: CollectorRegistry | None = None,
        server_factory: Callable[[int, str, CollectorRegistry], object] | None = None,
    ) -> None:
        super().__init__()
        self._registry = registry or CollectorRegistry()
        self._server_factory = server_factory or _default_server_factory
        self._server: object | None = None
        self._bus_topic = "status.bus"
        self._failure_topic = "status.ingestion.failure"
        self._stats_topic = "status.registry"
        self._port = 9093
        self._addr = "127.0.0.1"
        self._subscriptions: list[Subscription] = []
        self._queue_depth = Gauge(
            "homepi_bus_queue_depth",
            "Number of events currently waiting on the bus.",
            registry=self._registry,
        )
        self._lag_seconds = Gauge(
            "homepi_bus_lag_seconds",
            "Event dispatch lag in seconds.",
            registry=self._registry,
        )
        self._published_total = Gauge(
            "homepi_bus_published_total",
            "Total published events since startup.",
            registry=self._registry,
        )
        self._dropped_total = Gauge(
            "homepi_bus_dropped_total",
            "Total dropped events.",
            registry=self._registry,
        )
        self._parse_failures = Counter(
            "homepi_ingestion_parse_failures",
            "Inbound messages discarded because they could not be parsed.",
            ["source"],
            registry=self._registry,
        )
        self._devices = Gauge(
            "homepi_registry_devices",
            "Devices currently held in the registry.",
            registry=self._registry,
        )

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._port = int(options.get("port", self._port))
        self._addr = options.get("addr", self._addr)
        self._bus_topic = options.get("bus_topic", self._bus_topic)
        self._failure_topic = options.get("failure_topic", self._failure_topic)
        self._stats_topic = options.get("stats_topic", self._stats_topic)

    async def start(self) -> None:
        if self._server is None:
            self._server = self._server_factory(self._port, self._addr, self._registry)
            logger.info("Started Prometheus exporter on %s:%d", self._addr, self._port)
        self._subscriptions = [
            self.bus.subscribe(self._bus_topic, self._handle_bus_status),
            self.bus.subscribe(self._failure_topic, self._handle_failure),
            self.bus.subscribe(self._stats_topic, self._handle_registry_stats),
        ]

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            self.bus.unsubscribe(subscription)
        self._subscriptions.clear()
        # Recent prometheus_client releases return a (server, thread) pair.
        server = self._server[0] if isinstance(self._server, tuple) else self._server
        shutdown = getattr(server, "shutdown", None)
        if callable(shutdown):
            shutdown()
        self._server = None

    async def _handle_bus_status(self, topic: str, payload: BasePayload) -> None:
        if not isinstance(payload, BusStatus):
            return
        self._queue_depth.set(payload.queue_depth)
        self._lag_seconds.set(payload.lag_seconds)
        self._published_total.set(payload.published_total)
        self._dropped_total.set(payload.dropped_total)

    async def _handle_failure(self, topic: str, payload: BasePayload) -> None:
        if isinstance(payload, IngestionFailure):
            self._parse_failures.labels(source=payload.source).inc()

    async def _handle_registry_stats(self, topic: str, payload: BasePayload) -> None:
        if isinstance(payload, RegistryStats):
            self._devices.set(payload.device_count)


__all__ = ["PrometheusExporter"]
