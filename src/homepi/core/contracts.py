"""
Contracts and payload schemas shared by the HomePi bridge modules.

Modules only talk to each other through the event bus, so every message that
crosses a module boundary is declared here as a typed, immutable payload.
"""

from __future__ import annotations

import abc
import datetime as dt
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class BasePayload(BaseModel):
    """Base class for all bus payloads."""

    model_config = ConfigDict(extra="allow", frozen=True)

    schema_version: str = Field(
        default="1.0.0", description="Semantic version of the payload schema."
    )


class BusMessage(BasePayload):
    """Raw message received from the MQTT broker."""

    topic: str = Field(description="MQTT topic the message arrived on.")
    payload: bytes = Field(default=b"", description="Undecoded MQTT payload.")
    received_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(tz=dt.UTC),
        description="Receive timestamp in UTC.",
    )


class OutboundMessage(BasePayload):
    """JSON message that should be published to the MQTT broker."""

    topic: str
    payload: dict[str, Any] = Field(default_factory=dict)


class DeviceStateChanged(BasePayload):
    """Emitted whenever a device record changed in an observable way."""

    device_id: str
    state: dict[str, Any] = Field(
        default_factory=dict, description="Serialized device record after the change."
    )
    previous_id: str | None = Field(
        default=None, description="Former identifier when the change was a rename."
    )


class IngestionFailure(BasePayload):
    """A bus message that could not be parsed and was discarded."""

    source: str = Field(description="Message kind, e.g. snapshot or state.")
    topic: str
    reason: str


class RegistryStats(BasePayload):
    """Registry summary published after every snapshot reconciliation."""

    device_count: int = Field(ge=0)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class BusStatus(BasePayload):
    """Telemetry snapshot emitted by the event bus on `status.bus`."""

    queue_depth: int = Field(ge=0, description="Current number of queued events.")
    queue_capacity: int = Field(gt=0, description="Maximum queue capacity.")
    subscriber_count: int = Field(ge=0, description="Total registered handlers.")
    topic_count: int = Field(ge=0, description="Unique topics with subscribers.")
    published_total: int = Field(ge=0, description="Cumulative published events.")
    processed_total: int = Field(ge=0, description="Cumulative dispatched events.")
    dropped_total: int = Field(
        ge=0, description="Events dropped due to queue pressure or shutdown."
    )
    lag_seconds: float = Field(
        ge=0.0,
        description="Approximate lag between last publish and last dispatch completion.",
    )
    watermark: str = Field(
        default="normal",
        description="Watermark classification (normal/high/critical).",
    )


class HealthStatus(BaseModel):
    """Structured health report for modules."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class HealthSummary(BasePayload):
    """Aggregated health report emitted on `status.health.summary`."""

    status: str = Field(description="Overall classification.")
    modules: dict[str, HealthStatus] = Field(default_factory=dict)


class ModuleConfig(BaseModel):
    """Baseline configuration contract applied to all modules."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary module configuration."
    )


@runtime_checkable
class EventHandler(Protocol):
    """Callable type for bus subscribers."""

    async def __call__(self, topic: str, payload: BasePayload) -> None: ...


if TYPE_CHECKING:
    from .bus import EventBus


class BaseModule(abc.ABC):
    """
    Abstract base class for all modular components.

    Modules receive an event bus instance and are responsible for
    subscribing to topics during `start`.
    """

    name: str

    def __init__(self) -> None:
        self._configured = False
        self._config = ModuleConfig()
        self._bus: EventBus | None = None

    @property
    def bus(self) -> EventBus:
        if self._bus is None:
            raise RuntimeError(f"{self.__class__.__name__} has not been attached to an EventBus.")
        return self._bus

    def set_bus(self, bus: EventBus) -> None:
        """Attach the shared event bus instance to the module."""
        self._bus = bus

    async def configure(self, config: ModuleConfig) -> None:
        """Apply the provided configuration prior to module start."""
        self._config = config
        self._configured = True

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin processing by registering bus subscriptions or scheduling tasks."""

    async def stop(self) -> None:
        """
        Optional hook to release resources.

        Base implementation is a no-op so subclasses can override only
        when needed without being forced to mark the method abstract.
        """
        return None

    async def health(self) -> HealthStatus:
        """Return a basic health status; modules can override for richer diagnostics."""
        status = "healthy" if self._configured else "degraded"
        return HealthStatus(status=status, details={"configured": self._configured})
