"""Tests for the trigger registry."""

import asyncio
from datetime import datetime, timedelta

import pytest

from helpers import Blocking, Counter, DoorSensor, Failing, Weather, settle
from hamqtt_integration.errors import (
    DuplicateTriggerError,
    IntegrationError,
    PublishError,
    ScheduleParseError,
)
from hamqtt_integration.integration import Integration, Trigger, TriggerKind
from hamqtt_integration.mqtt.client import InboundMessage
from hamqtt_integration.triggers.registry import TriggerRegistry


class BadCron(Integration):
    trigger = Trigger.scheduled("every hour")

    async def run(self):
        pass


class Feb31(Integration):
    trigger = Trigger.scheduled("0 0 31 2 *")

    async def run(self):
        pass


class NoRun(Integration):
    trigger = Trigger.scheduled("0 * * * *")


class Lights(Integration):
    trigger = Trigger.subscribed("home/+/lights")

    def __init__(self, publisher):
        super().__init__(publisher)
        self.topics = []

    async def handle_message(self, message):
        self.topics.append(message.topic)


class TestTrigger:
    """Tests for Trigger declarations."""

    def test_kinds(self):
        assert Trigger.scheduled("0 * * * *").kind is TriggerKind.SCHEDULED
        assert Trigger.subscribed("a/b").kind is TriggerKind.SUBSCRIBED
        assert Trigger.both("0 * * * *", "a/b").kind is TriggerKind.BOTH

    def test_requires_a_facet(self):
        with pytest.raises(ValueError):
            Trigger()

    def test_run_on_startup_needs_schedule(self):
        with pytest.raises(ValueError):
            Trigger(topic="a/b", run_on_startup=True)


class TestRegistration:
    """Tests for register/unregister."""

    async def test_duplicate_topic(self, registry, publisher):
        registry.register(DoorSensor(publisher))

        with pytest.raises(DuplicateTriggerError, match="door/command"):
            registry.register(DoorSensor(publisher))

    async def test_topic_free_after_unregister(self, registry, publisher):
        first = DoorSensor(publisher)
        registry.register(first)
        await registry.unregister(first)

        second = DoorSensor(publisher)
        registry.register(second)

        assert registry.is_registered(second)
        assert not registry.is_registered(first)

    async def test_invalid_schedule(self, registry, publisher):
        with pytest.raises(ScheduleParseError):
            registry.register(BadCron(publisher))
        assert registry.registrations == []

    async def test_schedule_that_never_fires(self, registry, publisher):
        with pytest.raises(ScheduleParseError, match="0 0 31 2"):
            registry.register(Feb31(publisher))
        assert registry.registrations == []

    async def test_missing_handler(self, registry, publisher):
        with pytest.raises(IntegrationError, match="run"):
            registry.register(NoRun(publisher))

    async def test_same_instance_twice(self, registry, publisher):
        weather = Weather(publisher)
        registry.register(weather)
        with pytest.raises(IntegrationError, match="already registered"):
            registry.register(weather)

    async def test_discovery_only_integration(self, registry, publisher):
        plain = Integration(publisher)
        registry.register(plain)
        await registry.arm(plain)

        assert not registry.registration(plain).armed


class TestSchedule:
    """Tests for scheduled triggers."""

    async def test_fires_on_cron_boundaries(self, registry, publisher, clock):
        weather = Weather(publisher)
        registry.register(weather)
        await registry.arm(weather)

        await clock.advance(59 * 60)
        assert weather.runs == 0

        await clock.advance(60)
        assert weather.runs == 1

        await clock.advance(2 * 3600)
        assert weather.runs == 3

    async def test_rearm_keeps_single_timer(self, registry, publisher, clock):
        counter = Counter(publisher)
        registry.register(counter)

        await registry.arm(counter)
        await registry.arm(counter)
        await registry.arm(counter)
        await settle()

        assert clock.pending == 1
        await clock.advance(10 * 60)
        assert counter.runs == 10

    async def test_disarm_all_stops_timers(self, registry, publisher, clock):
        counter = Counter(publisher)
        registry.register(counter)
        await registry.arm(counter)

        await clock.advance(120)
        await registry.disarm_all()
        await clock.advance(600)

        assert counter.runs == 2
        assert not registry.registration(counter).armed

    async def test_tick_skipped_while_handler_runs(self, registry, publisher, clock):
        blocking = Blocking(publisher)
        registry.register(blocking)
        await registry.arm(blocking)

        registry.dispatch(InboundMessage("blocking/cmd", b"hold"))
        await settle()
        assert blocking.handling == 1

        await clock.advance(60)
        assert blocking.runs == 0
        assert registry.registration(blocking).skipped == 1

        blocking.release.set()
        await clock.advance(60)
        assert blocking.runs == 1

    async def test_startup_run_waits_for_handler(self, registry, publisher):
        blocking = Blocking(publisher)
        registry.register(blocking)
        await registry.arm(blocking)
        registry.dispatch(InboundMessage("blocking/cmd", b"hold"))
        await settle()

        startup = asyncio.create_task(registry.invoke_now(blocking))
        await settle()
        assert not startup.done()
        assert blocking.runs == 0

        blocking.release.set()
        await startup

        assert blocking.runs == 1
        assert registry.registration(blocking).skipped == 0

    async def test_early_wakeup_sleeps_again(self, fake_client, publisher):
        now = datetime(2026, 1, 1, 0, 0)
        sleeps = []

        def clock():
            return now

        async def drifting_sleep(seconds):
            nonlocal now
            sleeps.append(seconds)
            if len(sleeps) == 1:
                # Wake a second before the wall clock reaches the fire time
                now += timedelta(seconds=seconds - 1)
            elif len(sleeps) == 2:
                now += timedelta(seconds=seconds)
            else:
                await asyncio.Event().wait()

        registry = TriggerRegistry(fake_client, clock=clock, sleep=drifting_sleep)
        counter = Counter(publisher)
        registry.register(counter)
        try:
            await registry.arm(counter)
            await settle()

            assert sleeps == [60.0, 1.0, 60.0]
            assert counter.runs == 1
        finally:
            await registry.shutdown(timeout=0.1)

    async def test_failure_is_isolated(self, registry, publisher, clock):
        failing = Failing(publisher)
        counter = Counter(publisher)
        registry.register(failing)
        registry.register(counter)
        await registry.arm(failing)
        await registry.arm(counter)

        await clock.advance(180)

        assert failing.attempts == 3
        assert registry.registration(failing).failures == 3
        assert counter.runs == 3

    async def test_no_backfill_of_missed_ticks(self, registry, publisher, clock):
        counter = Counter(publisher)
        registry.register(counter)
        await registry.arm(counter)
        await settle()

        # Jump the wall clock forward without waking the sleeper, as if
        # the host had been suspended for an hour.
        clock.now = clock.now.replace(hour=1)
        await clock.advance(0)
        assert counter.runs == 1

        await clock.advance(60)
        assert counter.runs == 2


class TestSubscription:
    """Tests for subscribed triggers."""

    async def test_dispatch_to_matching_topic(self, registry, publisher, fake_client):
        door = DoorSensor(publisher)
        registry.register(door)
        await registry.arm(door)

        assert fake_client.subscriptions == ["door/command"]

        matched = registry.dispatch(InboundMessage("door/command", b'{"action":"open"}'))
        await settle()

        assert matched == 1
        assert len(door.messages) == 1
        assert door.messages[0].json() == {"action": "open"}

    async def test_other_topics_ignored(self, registry, publisher):
        door = DoorSensor(publisher)
        registry.register(door)
        await registry.arm(door)

        for topic in ("door/state", "door/command/extra", "window/command"):
            assert registry.dispatch(InboundMessage(topic, b"{}")) == 0
        await settle()

        assert door.messages == []

    async def test_unarmed_subscription_not_dispatched(self, registry, publisher):
        door = DoorSensor(publisher)
        registry.register(door)

        assert registry.dispatch(InboundMessage("door/command", b"{}")) == 0

    async def test_wildcard_topic(self, registry, publisher):
        lights = Lights(publisher)
        registry.register(lights)
        await registry.arm(lights)

        registry.dispatch(InboundMessage("home/kitchen/lights", b"on"))
        registry.dispatch(InboundMessage("home/kitchen/fan", b"on"))
        await settle()

        assert lights.topics == ["home/kitchen/lights"]

    async def test_messages_serialized_per_integration(self, registry, publisher):
        active = 0
        peak = 0
        handled = []

        class Slow(Integration):
            trigger = Trigger.subscribed("slow/cmd")

            async def handle_message(self, message):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                handled.append(message.payload)
                active -= 1

        slow = Slow(publisher)
        registry.register(slow)
        await registry.arm(slow)

        for i in range(3):
            registry.dispatch(InboundMessage("slow/cmd", str(i).encode()))
        await registry.shutdown(timeout=1.0)

        assert handled == [b"0", b"1", b"2"]
        assert peak == 1

    async def test_subscribe_failure(self, registry, publisher, fake_client):
        fake_client.connected = False
        door = DoorSensor(publisher)
        registry.register(door)

        with pytest.raises(PublishError):
            await registry.arm(door)
        assert not registry.registration(door).armed

    async def test_unregister_unsubscribes(self, registry, publisher, fake_client, events):
        door = DoorSensor(publisher)
        registry.register(door)
        await registry.arm(door)

        await registry.unregister(door)

        assert events[-1] == ("unsubscribe", "door/command")
