"""
Typed device records held by the registry.

``DeviceAttributes`` keeps a fixed set of optional state fields plus an
extras bucket for anything else a device reports. Only fields that were
actually seeded or received are considered present, so a merge can tell
"never reported" apart from "reported as null".
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .classifier import DeviceCategory
from .color import NEUTRAL_WHITE
from .descriptors import decode_json
from .errors import ParseFailure
from .naming import to_display_name

logger = logging.getLogger(__name__)


class DeviceAttributes(BaseModel):
    """State fields of a device; unknown fields land in ``model_extra``."""

    model_config = ConfigDict(extra="allow", frozen=True)

    state: str | None = None
    brightness: int | None = None
    color: dict[str, Any] | None = None
    temperature: float | None = None
    humidity: float | None = None
    contact: bool | None = None
    occupancy: bool | None = None
    linkquality: int | None = None

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def present(self) -> dict[str, Any]:
        """Return every field that has been set, known fields first."""
        values = {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name in self.model_fields_set
        }
        values.update(self.extras)
        return values

    def merged(self, update: DeviceAttributes) -> DeviceAttributes:
        """Overwrite exactly the fields present in ``update``."""
        values = self.present()
        values.update(update.present())
        return DeviceAttributes.model_validate(values)


_CATEGORY_SEEDS: dict[DeviceCategory, dict[str, Any]] = {
    DeviceCategory.LIGHT: {
        "state": "OFF",
        "brightness": 254,
        "color": NEUTRAL_WHITE.as_dict(),
    },
    DeviceCategory.SENSOR: {"temperature": None, "humidity": None},
    DeviceCategory.CONTACT: {"contact": None},
    DeviceCategory.MOTION: {"occupancy": False},
    DeviceCategory.SWITCH: {"state": "OFF"},
    DeviceCategory.UNKNOWN: {},
}


def seed_attributes(category: DeviceCategory) -> DeviceAttributes:
    """Default attribute set for a freshly discovered device."""
    return DeviceAttributes.model_validate(_CATEGORY_SEEDS[category])


class ParsedState(NamedTuple):
    """Fields that validated, plus the names of known fields that did not."""

    attributes: DeviceAttributes
    rejected: tuple[str, ...] = ()


def parse_state(raw: bytes | str) -> ParsedState:
    """
    Parse a partial state message published on ``<base>/<device>``.

    Fields are judged one by one: a known field with a value of the wrong type
    is dropped with a warning and listed in ``rejected`` while the rest of the
    message is kept. Only undecodable payloads and non-objects raise.
    """
    data = decode_json(raw)
    if not isinstance(data, dict):
        raise ParseFailure(f"Device state must be a JSON object, got {type(data).__name__}")
    try:
        return ParsedState(DeviceAttributes.model_validate(data))
    except ValidationError as exc:
        rejected = sorted({str(error["loc"][0]) for error in exc.errors() if error["loc"]})
    for name in rejected:
        logger.warning("Dropping state field %s with unexpected value %r", name, data.get(name))
    kept = {key: value for key, value in data.items() if key not in rejected}
    try:
        return ParsedState(DeviceAttributes.model_validate(kept), tuple(rejected))
    except ValidationError as exc:
        raise ParseFailure(f"Device state failed validation: {exc}") from exc


class DeviceRecord(BaseModel):
    """Registry entry for one physical device."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: DeviceCategory = DeviceCategory.UNKNOWN
    manufacturer: str | None = None
    model: str | None = None
    attributes: DeviceAttributes = Field(default_factory=DeviceAttributes)

    @classmethod
    def create(
        cls,
        device_id: str,
        category: DeviceCategory,
        *,
        manufacturer: str | None = None,
        model: str | None = None,
    ) -> DeviceRecord:
        return cls(
            id=device_id,
            name=to_display_name(device_id),
            category=category,
            manufacturer=manufacturer,
            model=model,
            attributes=seed_attributes(category),
        )

    def as_state(self) -> dict[str, Any]:
        """Flat JSON-friendly view used by the API and observers."""
        state = self.attributes.present()
        # Identity keys win over same-named fields a device might report.
        state.update(
            id=self.id,
            name=self.name,
            category=self.category.value,
            manufacturer=self.manufacturer,
            model=self.model,
        )
        return state


__all__ = [
    "DeviceAttributes",
    "DeviceRecord",
    "ParsedState",
    "parse_state",
    "seed_attributes",
]
