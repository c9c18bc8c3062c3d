"""Error taxonomy for registry and ingestion operations."""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for errors surfaced to API callers."""


class DeviceNotFoundError(RegistryError):
    """An operation referenced a device identifier that is not registered."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"Device not found: {device_id}")
        self.device_id = device_id


class InvalidArgumentError(RegistryError):
    """An operation received an argument it cannot act on."""


class ParseFailure(ValueError):
    """An inbound bus message could not be decoded or validated."""


__all__ = ["DeviceNotFoundError", "InvalidArgumentError", "ParseFailure", "RegistryError"]
