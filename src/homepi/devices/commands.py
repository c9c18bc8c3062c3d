"""
Translate API-level device commands into Zigbee2MQTT ``/set`` payloads.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.contracts import OutboundMessage
from .color import rgb_to_xy
from .registry import DeviceRegistry
from .topics import BridgeTopics

logger = logging.getLogger(__name__)

NATIVE_BRIGHTNESS_MAX = 254


class RgbColor(BaseModel):
    model_config = ConfigDict(frozen=True)

    r: int = Field(ge=0, le=255)
    g: int = Field(ge=0, le=255)
    b: int = Field(ge=0, le=255)


class DeviceCommand(BaseModel):
    """Request body for ``POST /devices/{id}/command``."""

    model_config = ConfigDict(frozen=True)

    state: str | None = Field(default=None, description="ON, OFF or TOGGLE.")
    brightness: int | None = Field(default=None, ge=0, le=100, description="Percentage.")
    color: RgbColor | None = None


def scale_brightness(percent: int) -> int:
    """Map 0-100 % to the 0-254 native range, rounding halves up."""
    return math.floor(percent / 100 * NATIVE_BRIGHTNESS_MAX + 0.5)


def translate_command(command: DeviceCommand) -> dict[str, Any]:
    """Build the native payload containing only the fields given in ``command``."""
    payload: dict[str, Any] = {}
    if command.state is not None:
        payload["state"] = command.state
    if command.brightness is not None:
        payload["brightness"] = scale_brightness(command.brightness)
    if command.color is not None:
        payload["color"] = rgb_to_xy(command.color.r, command.color.g, command.color.b).as_dict()
    return payload


Publisher = Callable[[OutboundMessage], Awaitable[None]]


class CommandTranslator:
    """Validate the target device and publish its translated command."""

    def __init__(self, registry: DeviceRegistry, topics: BridgeTopics, publish: Publisher) -> None:
        self._registry = registry
        self._topics = topics
        self._publish = publish

    async def send(self, device_id: str, command: DeviceCommand) -> OutboundMessage:
        """Publish the command without waiting for any acknowledgement.

        Raises DeviceNotFoundError when ``device_id`` is not registered.
        """
        self._registry.require(device_id)
        message = OutboundMessage(
            topic=self._topics.command(device_id), payload=translate_command(command)
        )
        await self._publish(message)
        logger.debug("Sent command to %s: %s", device_id, message.payload)
        return message


__all__ = [
    "CommandTranslator",
    "DeviceCommand",
    "RgbColor",
    "scale_brightness",
    "translate_command",
]
