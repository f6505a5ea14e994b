"""MQTT connection and publishing."""

from .client import MQTTClient, ConnectionState, InboundMessage
from .publisher import Publisher, serialize

__all__ = ["MQTTClient", "ConnectionState", "InboundMessage", "Publisher", "serialize"]
