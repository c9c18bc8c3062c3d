"""Broker connectivity modules."""

from .mqtt_bridge import MqttBridge

__all__ = ["MqttBridge"]
