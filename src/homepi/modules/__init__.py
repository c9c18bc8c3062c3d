"""
Bridge modules grouped by responsibility.

Each module is a ``BaseModule`` wired to the shared event bus by the
orchestrator.
"""

from .bridge.mqtt_bridge import MqttBridge
from .dashboard.control_api import ControlApi
from .dashboard.websocket_gateway import WebsocketGateway
from .process.event_ingestion import EventIngestion
from .status.prometheus_exporter import PrometheusExporter

__all__ = [
    "ControlApi",
    "EventIngestion",
    "MqttBridge",
    "PrometheusExporter",
    "WebsocketGateway",
]
