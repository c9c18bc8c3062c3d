"""
In-memory device registry.

The registry is the only owner of device records. It is rebuilt from the
network's snapshots after a restart and mutated synchronously, so callers on
the event loop never observe a half-applied operation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from .classifier import classify
from .descriptors import DeviceDescriptor
from .errors import DeviceNotFoundError, InvalidArgumentError
from .naming import to_identifier
from .records import DeviceAttributes, DeviceRecord, seed_attributes
from .topics import BRIDGE_SEGMENT, RESERVED_TOPIC_CHARACTERS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SnapshotResult:
    """Outcome of reconciling one snapshot."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class DeviceRegistry:
    """Mapping from device identifier to its current record."""

    def __init__(self) -> None:
        self._devices: dict[str, DeviceRecord] = {}

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[DeviceRecord]:
        return iter(list(self._devices.values()))

    def get(self, device_id: str) -> DeviceRecord | None:
        return self._devices.get(device_id)

    def require(self, device_id: str) -> DeviceRecord:
        record = self._devices.get(device_id)
        if record is None:
            raise DeviceNotFoundError(device_id)
        return record

    def list(self) -> list[DeviceRecord]:
        return list(self._devices.values())

    def replace_from_snapshot(
        self, descriptors: Iterable[DeviceDescriptor], *, prune_missing: bool = False
    ) -> SnapshotResult:
        """
        Create or refresh a record for every device in a full snapshot.

        Seed defaults never clobber observed state: for known devices the
        existing attributes are layered over the category seed, and the
        category and explicit display name are kept. With ``prune_missing``
        devices absent from the snapshot are dropped.
        """
        result = SnapshotResult()
        seen: set[str] = set()
        for descriptor in descriptors:
            if descriptor.is_coordinator:
                continue
            device_id = descriptor.friendly_name
            seen.add(device_id)
            existing = self._devices.get(device_id)
            if existing is None:
                self._devices[device_id] = DeviceRecord.create(
                    device_id,
                    classify(descriptor),
                    manufacturer=descriptor.manufacturer,
                    model=descriptor.model_id,
                )
                result.added.append(device_id)
                continue
            attributes = seed_attributes(existing.category).merged(existing.attributes)
            self._devices[device_id] = existing.model_copy(
                update={
                    "attributes": attributes,
                    "manufacturer": descriptor.manufacturer,
                    "model": descriptor.model_id,
                }
            )
            result.updated.append(device_id)
        if prune_missing:
            for device_id in [key for key in self._devices if key not in seen]:
                del self._devices[device_id]
                result.removed.append(device_id)
        logger.info(
            "Device registry: %d device(s) (%d added, %d removed)",
            len(self._devices),
            len(result.added),
            len(result.removed),
        )
        for record in self._devices.values():
            logger.debug("  %s (%s)", record.id, record.category)
        return result

    def merge_state(
        self, device_id: str, partial: DeviceAttributes | dict[str, Any]
    ) -> DeviceRecord | None:
        """
        Overwrite the fields present in ``partial``; leave all others untouched.

        Returns the updated record, or ``None`` when the device is unknown.
        """
        existing = self._devices.get(device_id)
        if existing is None:
            logger.debug("Ignoring state for unknown device %s", device_id)
            return None
        if not isinstance(partial, DeviceAttributes):
            partial = DeviceAttributes.model_validate(partial)
        updated = existing.model_copy(update={"attributes": existing.attributes.merged(partial)})
        self._devices[device_id] = updated
        return updated

    def rename(self, device_id: str, new_name: str | None) -> DeviceRecord:
        """Move a record to the identifier derived from ``new_name``."""
        existing = self.require(device_id)
        display_name = (new_name or "").strip()
        if not display_name:
            raise InvalidArgumentError("Name required")
        if RESERVED_TOPIC_CHARACTERS.intersection(display_name):
            raise InvalidArgumentError("Name must not contain '/', '+' or '#'")
        new_id = to_identifier(display_name)
        if new_id == BRIDGE_SEGMENT:
            raise InvalidArgumentError(f"Identifier '{BRIDGE_SEGMENT}' is reserved")
        if new_id != device_id and new_id in self._devices:
            raise InvalidArgumentError(f"Device identifier already in use: {new_id}")
        renamed = existing.model_copy(update={"id": new_id, "name": display_name})
        # Single synchronous step: no await between removing and inserting.
        del self._devices[device_id]
        self._devices[new_id] = renamed
        logger.info("Renamed device %s -> %s", device_id, new_id)
        return renamed

    def remove(self, device_id: str) -> DeviceRecord:
        record = self.require(device_id)
        del self._devices[device_id]
        logger.info("Removed device %s", device_id)
        return record


__all__ = ["DeviceRegistry", "SnapshotResult"]
