"""Request/response and realtime surfaces."""

from .control_api import ControlApi
from .websocket_gateway import WebsocketGateway

__all__ = ["ControlApi", "WebsocketGateway"]
