"""Infer a device category from its exposed capabilities."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import StrEnum

from .descriptors import DeviceDescriptor, ExposedFeature


class DeviceCategory(StrEnum):
    LIGHT = "light"
    SENSOR = "sensor"
    CONTACT = "contact"
    MOTION = "motion"
    SWITCH = "switch"
    UNKNOWN = "unknown"


def _is_light(entry: ExposedFeature) -> bool:
    return entry.type == "light" or any(f.name == "brightness" for f in entry.features or ())


def _is_climate_reading(entry: ExposedFeature) -> bool:
    return entry.name in ("temperature", "humidity")


def _is_contact(entry: ExposedFeature) -> bool:
    return entry.name == "contact"


def _is_occupancy(entry: ExposedFeature) -> bool:
    return entry.name == "occupancy"


def _is_switch(entry: ExposedFeature) -> bool:
    return entry.type == "switch"


# Evaluated in order; the first category with a matching entry wins.
_RULES: tuple[tuple[DeviceCategory, Callable[[ExposedFeature], bool]], ...] = (
    (DeviceCategory.LIGHT, _is_light),
    (DeviceCategory.SENSOR, _is_climate_reading),
    (DeviceCategory.CONTACT, _is_contact),
    (DeviceCategory.MOTION, _is_occupancy),
    (DeviceCategory.SWITCH, _is_switch),
)


def classify_exposes(exposes: Sequence[ExposedFeature]) -> DeviceCategory:
    for category, matches in _RULES:
        if any(matches(entry) for entry in exposes):
            return category
    return DeviceCategory.UNKNOWN


def classify(descriptor: DeviceDescriptor) -> DeviceCategory:
    """Return the semantic category for a descriptor."""
    if descriptor.definition is None:
        return DeviceCategory.UNKNOWN
    return classify_exposes(descriptor.definition.exposes or ())


__all__ = ["DeviceCategory", "classify", "classify_exposes"]
