"""
Core infrastructure for the HomePi bridge.

Exposes the asynchronous event bus, payload contracts, configuration service
and the orchestrator that wires modules together.
"""

from .bus import EventBus, Subscription
from .config import ConfigError, ConfigService, ConfigSnapshot
from .contracts import (
    BaseModule,
    BasePayload,
    BusMessage,
    DeviceStateChanged,
    HealthStatus,
    IngestionFailure,
    ModuleConfig,
    OutboundMessage,
    RegistryStats,
)
from .orchestrator import Orchestrator

__all__ = [
    "BaseModule",
    "BasePayload",
    "BusMessage",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "DeviceStateChanged",
    "EventBus",
    "HealthStatus",
    "IngestionFailure",
    "ModuleConfig",
    "Orchestrator",
    "OutboundMessage",
    "RegistryStats",
    "Subscription",
]
