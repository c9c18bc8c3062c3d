"""Zigbee2MQTT topic layout relative to a configurable base topic."""

from __future__ import annotations

from dataclasses import dataclass

BRIDGE_SEGMENT = "bridge"
# Topic separator and MQTT wildcards; none may appear inside a device segment.
RESERVED_TOPIC_CHARACTERS = frozenset("/+#")


@dataclass(frozen=True, slots=True)
class BridgeTopics:
    base: str = "zigbee2mqtt"

    @property
    def subscription(self) -> str:
        return f"{self.base}/#"

    @property
    def devices_snapshot(self) -> str:
        return f"{self.base}/{BRIDGE_SEGMENT}/devices"

    @property
    def rename_request(self) -> str:
        return f"{self.base}/{BRIDGE_SEGMENT}/request/device/rename"

    @property
    def remove_request(self) -> str:
        return f"{self.base}/{BRIDGE_SEGMENT}/request/device/remove"

    @property
    def permit_join_request(self) -> str:
        return f"{self.base}/{BRIDGE_SEGMENT}/request/permit_join"

    def command(self, device_id: str) -> str:
        return f"{self.base}/{device_id}/set"

    def device_for_state_topic(self, topic: str) -> str | None:
        """Return the device id for ``<base>/<device>`` topics, else ``None``."""
        parts = topic.split("/")
        if len(parts) != 2 or parts[0] != self.base:
            return None
        if parts[1] == BRIDGE_SEGMENT or not parts[1]:
            return None
        return parts[1]


__all__ = ["BRIDGE_SEGMENT", "RESERVED_TOPIC_CHARACTERS", "BridgeTopics"]
