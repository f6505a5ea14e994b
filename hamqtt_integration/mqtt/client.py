"""Async MQTT client wrapper."""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import aiomqtt

from ..config import MQTTConfig
from ..errors import PublishError

logger = logging.getLogger(__name__)

# Called after every successful (re)connection
ConnectCallback = Callable[[], Awaitable[None]]


class ConnectionState(Enum):
    """Lifecycle of the broker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class InboundMessage:
    """A message received on a subscribed topic."""

    topic: str
    payload: bytes
    qos: int = 0
    retain: bool = False

    @property
    def text(self) -> str:
        """Payload decoded as UTF-8."""
        return self.payload.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Payload parsed as JSON.

        Raises:
            ValueError: If the payload is not valid JSON
        """
        return json.loads(self.payload)

    @classmethod
    def from_aiomqtt(cls, message: aiomqtt.Message) -> "InboundMessage":
        """Convert an aiomqtt message."""
        if isinstance(message.payload, (bytes, bytearray)):
            payload = bytes(message.payload)
        elif message.payload is None:
            payload = b""
        else:
            payload = str(message.payload).encode()
        return cls(
            topic=str(message.topic),
            payload=payload,
            qos=message.qos,
            retain=message.retain,
        )


class MQTTClient:
    """Async MQTT client shared by every integration.

    Wraps aiomqtt with connection state tracking, connect callbacks and a
    send lock so concurrent publishers never interleave on the connection.
    """

    def __init__(self, config: MQTTConfig):
        """Initialize the MQTT client.

        Args:
            config: MQTT configuration
        """
        self.config = config
        self._client: Optional[aiomqtt.Client] = None
        self._state = ConnectionState.DISCONNECTED
        self._send_lock = asyncio.Lock()
        self._connect_callbacks: list[ConnectCallback] = []
        self._connections = 0

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Check if connected to MQTT broker."""
        return self._state is ConnectionState.CONNECTED and self._client is not None

    @property
    def connections(self) -> int:
        """Number of successful connections so far."""
        return self._connections

    @property
    def availability_topic(self) -> str:
        """Get the availability topic."""
        return f"{self.config.node_id}/availability"

    def add_connect_callback(self, callback: ConnectCallback) -> None:
        """Register a coroutine function run after every (re)connection.

        Callbacks run in registration order. An error in one is logged and
        does not stop the others.
        """
        self._connect_callbacks.append(callback)

    async def connect(self) -> None:
        """Connect to the MQTT broker and fire the connect callbacks.

        Raises:
            aiomqtt.MqttError: If connection fails
        """
        logger.info(f"Connecting to MQTT broker at {self.config.host}:{self.config.port}")
        self._state = ConnectionState.CONNECTING

        try:
            self._client = aiomqtt.Client(
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                identifier=self.config.node_id,
                keepalive=self.config.keepalive,
                # Last Will and Testament for availability
                will=aiomqtt.Will(
                    topic=self.availability_topic,
                    payload="offline",
                    qos=self.config.qos,
                    retain=True,
                ),
            )
            await self._client.__aenter__()
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self._client = None
            self._state = ConnectionState.DISCONNECTED
            raise

        self._state = ConnectionState.CONNECTED
        self._connections += 1
        logger.info(f"Connected to MQTT broker (connection #{self._connections})")

        await self.publish_availability("online")
        await self._fire_connect_callbacks()

    async def _fire_connect_callbacks(self) -> None:
        for callback in self._connect_callbacks:
            try:
                await callback()
            except Exception as e:
                logger.error(f"Connect callback {callback!r} failed: {e}", exc_info=True)

    async def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        if self._client is None:
            self._state = ConnectionState.DISCONNECTED
            return

        if self.connected:
            try:
                await self.publish_availability("offline")
            except PublishError as e:
                logger.debug(f"Could not publish offline status: {e}")

        try:
            await self._client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            logger.debug(f"Error while closing MQTT connection: {e}")

        self._client = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("Disconnected from MQTT broker")

    def mark_disconnected(self) -> None:
        """Record a connection loss reported by the transport."""
        if self._state is not ConnectionState.DISCONNECTED:
            logger.warning("MQTT connection lost")
        self._state = ConnectionState.DISCONNECTED

    async def publish(
        self,
        topic: str,
        payload: Union[str, bytes],
        retain: bool = False,
        qos: Optional[int] = None,
    ) -> None:
        """Publish an already serialized payload.

        Returns once aiomqtt reports the message as sent, which for QoS 1
        means the broker acknowledged it.

        Args:
            topic: MQTT topic
            payload: Serialized payload (text or raw bytes)
            retain: Whether to retain the message
            qos: QoS level (default from config, never below 1)

        Raises:
            PublishError: If not connected or the broker rejected the send
        """
        if not self.connected:
            raise PublishError(f"Not connected to MQTT broker (publish to {topic})")

        if qos is None:
            qos = self.config.qos

        async with self._send_lock:
            try:
                await self._client.publish(
                    topic,
                    payload=payload,
                    qos=qos,
                    retain=retain,
                )
            except aiomqtt.MqttError as e:
                raise PublishError(f"Failed to publish to {topic}: {e}") from e

        logger.debug(f"Published to {topic}: {payload[:100]}")

    async def publish_availability(self, status: str) -> None:
        """Publish availability status.

        Args:
            status: "online" or "offline"
        """
        await self.publish(self.availability_topic, status, retain=True)
        logger.info(f"Published availability: {status}")

    async def subscribe(self, topic: str) -> None:
        """Subscribe to a topic with at-least-once delivery.

        Args:
            topic: MQTT topic filter (wildcards allowed)

        Raises:
            PublishError: If not connected
        """
        if not self.connected:
            raise PublishError(f"Not connected to MQTT broker (subscribe to {topic})")

        await self._client.subscribe(topic, qos=self.config.qos)
        logger.debug(f"Subscribed to {topic}")

    async def unsubscribe(self, topic: str) -> None:
        """Unsubscribe from a topic, if connected."""
        if not self.connected:
            return

        await self._client.unsubscribe(topic)
        logger.debug(f"Unsubscribed from {topic}")

    async def messages(self) -> AsyncIterator[InboundMessage]:
        """Yield incoming messages until the connection drops.

        Raises:
            PublishError: If not connected
            aiomqtt.MqttError: When the connection is lost
        """
        if not self.connected:
            raise PublishError("Not connected to MQTT broker")

        logger.debug("Starting MQTT message stream")

        async for message in self._client.messages:
            inbound = InboundMessage.from_aiomqtt(message)
            logger.debug(f"Received message on {inbound.topic}: {inbound.payload[:100]}")
            yield inbound
