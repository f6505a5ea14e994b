"""Payload serialization and publishing."""

import dataclasses
import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from ..config import MQTTConfig
from ..models.discovery import DiscoveryDocument
from .client import MQTTClient

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert a camelCase or PascalCase name to snake_case.

    Names that are already snake_case come back unchanged.
    """
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def _fields(value: Any) -> dict:
    """Field name to value for a model or dataclass instance."""
    if isinstance(value, BaseModel):
        # The dump's keys honour exclude=True fields and extra fields
        names = value.model_dump(exclude_none=True).keys()
        return {name: getattr(value, name) for name in names}
    return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}


def _json_default(value: Any) -> Any:
    return to_jsonable_python(value, fallback=str)


def _normalize(value: Any) -> Any:
    """Turn models, dataclasses and containers into JSON-ready data.

    Model and dataclass field names are converted to snake_case. Mapping
    keys are the caller's data and are kept exactly as given.
    """
    if isinstance(value, BaseModel) or (
        dataclasses.is_dataclass(value) and not isinstance(value, type)
    ):
        return {snake_case(name): _normalize(v) for name, v in _fields(value).items()}
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize(item) for item in value]
    return value


def serialize(payload: Any) -> Union[str, bytes]:
    """Serialize a payload for publishing.

    Structured payloads (pydantic models, dataclasses, mappings, sequences)
    become compact JSON, with model and dataclass field names in snake_case.
    Scalars are sent as plain text the way Home Assistant state topics
    expect them. Bytes are sent unchanged.

    Args:
        payload: Value to serialize

    Returns:
        Serialized payload
    """
    if payload is None:
        return ""
    if isinstance(payload, (str, bytes)):
        return payload
    if isinstance(payload, bool):
        return "true" if payload else "false"
    if isinstance(payload, (int, float)):
        return str(payload)
    return json.dumps(_normalize(payload), separators=(",", ":"), default=_json_default)


class Publisher:
    """Publishes integration state and discovery documents.

    All publishing goes through the shared MQTTClient, which serializes
    sends on the connection.
    """

    def __init__(self, mqtt_client: MQTTClient, config: MQTTConfig):
        """Initialize the publisher.

        Args:
            mqtt_client: MQTT client (connected or not)
            config: MQTT configuration
        """
        self.client = mqtt_client
        self.config = config

    @property
    def connected(self) -> bool:
        return self.client.connected

    async def publish(self, topic: str, payload: Any, retain: bool = False) -> None:
        """Serialize and publish a payload with at-least-once delivery.

        Args:
            topic: MQTT topic
            payload: Payload (see ``serialize``)
            retain: Whether to retain the message

        Raises:
            PublishError: If there is no active connection
        """
        await self.client.publish(topic, serialize(payload), retain=retain)

    async def publish_discovery_document(self, document: DiscoveryDocument) -> str:
        """Publish a Home Assistant discovery document.

        Unique ids are assigned before publishing and the document is
        retained so Home Assistant picks it up after a restart.

        Args:
            document: Discovery document

        Returns:
            Topic the document was published to

        Raises:
            SchemaError: If the document is malformed
            PublishError: If there is no active connection
        """
        document.assign_unique_ids()
        topic = document.discovery_topic(self.config.discovery_prefix)
        await self.publish(topic, document.to_payload(), retain=True)
        logger.info(f"Published discovery document for '{document.device.name}' to {topic}")
        return topic
