"""Integration base class and trigger declaration.

An integration declares its capabilities independently:

* a discovery document, by overriding ``discovery_document()``
* a schedule and/or a subscription, through its ``trigger``
* the matching work, by overriding ``run()`` and/or ``handle_message()``

Example::

    class Weather(Integration):
        trigger = Trigger.scheduled("0 * * * *", run_on_startup=True)

        def discovery_document(self):
            return DiscoveryDocument(device=..., components={...})

        async def run(self):
            await self.publish("weather/state", {"temperature": 21.5})
"""

from enum import Enum
from typing import Any, ClassVar, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, model_validator

from .models.discovery import DiscoveryDocument
from .mqtt.client import InboundMessage

if TYPE_CHECKING:
    from .mqtt.publisher import Publisher


class TriggerKind(Enum):
    """Which trigger facets are present."""

    SCHEDULED = "scheduled"
    SUBSCRIBED = "subscribed"
    BOTH = "both"

    def __str__(self) -> str:
        return self.value


class Trigger(BaseModel):
    """What causes an integration's work to run.

    ``schedule`` is a 5-field cron expression, ``topic`` an MQTT topic
    filter. At least one is required. ``run_on_startup`` only applies to
    scheduled triggers.
    """

    model_config = ConfigDict(frozen=True)

    schedule: Optional[str] = None
    topic: Optional[str] = None
    run_on_startup: bool = False

    @model_validator(mode="after")
    def _check_facets(self) -> "Trigger":
        if self.schedule is None and self.topic is None:
            raise ValueError("Trigger needs a schedule, a topic, or both")
        if self.run_on_startup and self.schedule is None:
            raise ValueError("run_on_startup requires a schedule")
        if self.topic is not None and not self.topic.strip():
            raise ValueError("Trigger topic must not be empty")
        return self

    @classmethod
    def scheduled(cls, schedule: str, run_on_startup: bool = False) -> "Trigger":
        return cls(schedule=schedule, run_on_startup=run_on_startup)

    @classmethod
    def subscribed(cls, topic: str) -> "Trigger":
        return cls(topic=topic)

    @classmethod
    def both(cls, schedule: str, topic: str, run_on_startup: bool = False) -> "Trigger":
        return cls(schedule=schedule, topic=topic, run_on_startup=run_on_startup)

    @property
    def kind(self) -> TriggerKind:
        if self.schedule is not None and self.topic is not None:
            return TriggerKind.BOTH
        if self.schedule is not None:
            return TriggerKind.SCHEDULED
        return TriggerKind.SUBSCRIBED

    @property
    def is_scheduled(self) -> bool:
        return self.schedule is not None

    @property
    def is_subscribed(self) -> bool:
        return self.topic is not None


class Integration:
    """Base class for a unit of work driven by a schedule or MQTT messages.

    Integrations are created once at startup and invoked repeatedly.
    Invocations of the same integration never overlap.
    """

    trigger: ClassVar[Optional[Trigger]] = None

    def __init__(self, publisher: "Publisher"):
        """Initialize the integration.

        Args:
            publisher: Publisher shared by all integrations
        """
        self.publisher = publisher

    @property
    def name(self) -> str:
        """Name used in log messages."""
        return type(self).__name__

    def discovery_document(self) -> Optional[DiscoveryDocument]:
        """Discovery document published on every connection, or None."""
        return None

    async def run(self) -> None:
        """Do the scheduled work. Required when the trigger has a schedule."""
        raise NotImplementedError(f"{self.name} has a schedule but does not implement run()")

    async def handle_message(self, message: InboundMessage) -> None:
        """Handle a message on the subscribed topic. Required when the trigger has a topic."""
        raise NotImplementedError(
            f"{self.name} has a subscription but does not implement handle_message()"
        )

    async def publish(self, topic: str, payload: Any, retain: bool = False) -> None:
        """Publish state through the shared publisher.

        Raises:
            PublishError: If there is no active connection
        """
        await self.publisher.publish(topic, payload, retain=retain)

    def implements(self, method: str) -> bool:
        """Whether a subclass overrides ``run`` or ``handle_message``."""
        return getattr(type(self), method) is not getattr(Integration, method)

    def __repr__(self) -> str:
        return f"<{self.name} trigger={self.trigger!r}>"
