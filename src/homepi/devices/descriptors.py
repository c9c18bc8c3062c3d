"""
Zigbee2MQTT device descriptors as published on ``<base>/bridge/devices``.

Only the fields the bridge relies on are declared; everything else the
network reports is kept as extra data and ignored.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ParseFailure

logger = logging.getLogger(__name__)

COORDINATOR_TYPE = "Coordinator"


class ExposedFeature(BaseModel):
    """One entry of a device's ``exposes`` list, possibly composite."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str | None = None
    name: str | None = None
    features: list[ExposedFeature] | None = None


class DeviceDefinition(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    model: str | None = None
    vendor: str | None = None
    exposes: list[ExposedFeature] | None = None


class DeviceDescriptor(BaseModel):
    """Capability metadata for one device on the network."""

    model_config = ConfigDict(extra="allow", frozen=True)

    friendly_name: str = Field(min_length=1)
    type: str | None = None
    ieee_address: str | None = None
    manufacturer: str | None = None
    model_id: str | None = None
    definition: DeviceDefinition | None = None

    @property
    def is_coordinator(self) -> bool:
        return self.type == COORDINATOR_TYPE


def decode_json(raw: bytes | str) -> Any:
    """Decode a raw MQTT payload, raising ParseFailure on any decoding error."""
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseFailure(f"Payload is not valid JSON: {exc}") from exc


def parse_snapshot(raw: bytes | str) -> list[DeviceDescriptor]:
    """Parse a full device listing.

    The listing itself must be a JSON array. Entries that fail validation are
    skipped so one odd device does not hide the rest of the network.
    """
    data = decode_json(raw)
    if not isinstance(data, list):
        raise ParseFailure(f"Device snapshot must be a JSON array, got {type(data).__name__}")
    descriptors: list[DeviceDescriptor] = []
    for index, entry in enumerate(data):
        try:
            descriptors.append(DeviceDescriptor.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping invalid descriptor #%d in snapshot: %s", index, exc)
    return descriptors


__all__ = [
    "COORDINATOR_TYPE",
    "DeviceDefinition",
    "DeviceDescriptor",
    "ExposedFeature",
    "decode_json",
    "parse_snapshot",
]
