"""
HomePi - Zigbee2MQTT device bridge

Keeps a typed, in-memory registry of the devices on a Zigbee network and
exposes it over HTTP and WebSocket.
"""

__version__ = "0.1.0"

from homepi.devices import DeviceCategory, DeviceRecord, DeviceRegistry

__all__ = ["DeviceCategory", "DeviceRecord", "DeviceRegistry"]
