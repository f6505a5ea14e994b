"""Test doubles and integrations used across the test suite."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from hamqtt_integration.config import MQTTConfig
from hamqtt_integration.errors import PublishError
from hamqtt_integration.integration import Integration, Trigger
from hamqtt_integration.models.discovery import Component, Device, DiscoveryDocument


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeMQTTClient:
    """Stands in for MQTTClient; records every call in ``events``."""

    def __init__(self, config: MQTTConfig, events: list):
        self.config = config
        self.events = events
        self.connected = True
        self.published: list[tuple[str, str, bool]] = []
        self.subscriptions: list[str] = []
        self.fail_subscribe: set[str] = set()
        self._connect_callbacks = []

    @property
    def availability_topic(self) -> str:
        return f"{self.config.node_id}/availability"

    def add_connect_callback(self, callback) -> None:
        self._connect_callbacks.append(callback)

    async def connect(self) -> None:
        self.connected = True
        for callback in self._connect_callbacks:
            await callback()

    async def publish(self, topic: str, payload, retain: bool = False, qos: Optional[int] = None) -> None:
        if not self.connected:
            raise PublishError(f"Not connected (publish to {topic})")
        self.published.append((topic, payload, retain))
        self.events.append(("publish", topic))

    async def subscribe(self, topic: str) -> None:
        if not self.connected:
            raise PublishError(f"Not connected (subscribe to {topic})")
        if topic in self.fail_subscribe:
            raise PublishError(f"Broker refused subscription to {topic}")
        self.subscriptions.append(topic)
        self.events.append(("subscribe", topic))

    async def unsubscribe(self, topic: str) -> None:
        self.events.append(("unsubscribe", topic))


class FakeClock:
    """Virtual wall clock; ``sleep`` only returns when ``advance`` passes its deadline."""

    def __init__(self, start: datetime):
        self.now = start
        self._sleepers: list[tuple[datetime, asyncio.Future]] = []

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + timedelta(seconds=seconds), future))
        await future

    @property
    def pending(self) -> int:
        """Number of tasks currently sleeping."""
        return sum(1 for _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        end = self.now + timedelta(seconds=seconds)
        while True:
            await settle()
            self._sleepers = [(d, f) for d, f in self._sleepers if not f.done()]
            due = [d for d, _ in self._sleepers if d <= end]
            if not due:
                break
            self.now = max(self.now, min(due))
            for deadline, future in self._sleepers:
                if deadline <= self.now and not future.done():
                    future.set_result(None)
        self.now = end
        await settle()

class Weather(Integration):
    """Hourly weather sensor that also runs on startup."""

    trigger = Trigger.scheduled("0 * * * *", run_on_startup=True)

    def __init__(self, publisher, events=None):
        super().__init__(publisher)
        self.events = events if events is not None else []
        self.runs = 0

    def discovery_document(self):
        return DiscoveryDocument(
            component="sensor",
            device=Device(name="Weather", identifiers=["weather_device"], manufacturer="hamqtt"),
            components={
                "weather_temperature": Component(
                    platform="sensor",
                    state_topic="weather/state",
                    value_template="{{ value_json.temperature }}",
                    unit_of_measurement="°C",
                    device_class="temperature",
                ),
            },
        )

    async def run(self):
        self.runs += 1
        self.events.append(("run", self.name))
        await self.publish("weather/state", {"temperature": 21.5})


class DoorSensor(Integration):
    """Reacts to commands on door/command."""

    trigger = Trigger.subscribed("door/command")

    def __init__(self, publisher, events=None):
        super().__init__(publisher)
        self.events = events if events is not None else []
        self.messages = []

    async def handle_message(self, message):
        self.messages.append(message)
        self.events.append(("message", self.name))


class Counter(Integration):
    """Scheduled every minute, not run on startup."""

    trigger = Trigger.scheduled("* * * * *")

    def __init__(self, publisher):
        super().__init__(publisher)
        self.runs = 0

    async def run(self):
        self.runs += 1


class Blocking(Integration):
    """Every-minute integration whose message handler waits on an event."""

    trigger = Trigger.both("* * * * *", "blocking/cmd", run_on_startup=True)

    def __init__(self, publisher):
        super().__init__(publisher)
        self.release = asyncio.Event()
        self.runs = 0
        self.handling = 0

    async def run(self):
        self.runs += 1

    async def handle_message(self, message):
        self.handling += 1
        await self.release.wait()


class Failing(Integration):
    """Scheduled integration that always raises."""

    trigger = Trigger.scheduled("* * * * *", run_on_startup=True)

    def __init__(self, publisher):
        super().__init__(publisher)
        self.attempts = 0

    async def run(self):
        self.attempts += 1
        raise RuntimeError("sensor unreachable")
