"""Trigger registry: schedules, subscriptions and dispatch.

Each registered integration gets:

* one background asyncio task per armed schedule, which sleeps until the
  next cron fire time and invokes ``run()``
* a subscription on its topic filter; every matching inbound message is
  dispatched to ``handle_message()`` in its own task

Invocations of one integration are serialized by a per-integration lock.
A cron tick that finds the integration still busy is skipped, never
queued; the startup run and inbound messages wait for the lock.
Different integrations do not share locks and run concurrently.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

import aiomqtt

from ..errors import DuplicateTriggerError, IntegrationError
from ..integration import Integration, Trigger
from ..mqtt.client import InboundMessage, MQTTClient
from .cron import CronSchedule

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def local_now() -> datetime:
    """Current local time, timezone aware."""
    return datetime.now().astimezone()


@dataclass
class Registration:
    """Registry bookkeeping for one integration."""

    integration: Integration
    trigger: Optional[Trigger]
    schedule: Optional[CronSchedule] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    timer: Optional[asyncio.Task] = None
    subscribed: bool = False
    invocations: int = 0
    skipped: int = 0
    failures: int = 0

    @property
    def armed(self) -> bool:
        return (self.timer is not None and not self.timer.done()) or self.subscribed


class TriggerRegistry:
    """Maps integrations to their triggers and invokes them."""

    def __init__(
        self,
        mqtt_client: MQTTClient,
        clock: Clock = local_now,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the registry.

        Args:
            mqtt_client: Client used for subscriptions
            clock: Returns the current time (cron is evaluated in its timezone)
            sleep: Coroutine function used to wait between ticks
        """
        self.client = mqtt_client
        self._clock = clock
        self._sleep = sleep
        self._registrations: dict[int, Registration] = {}
        self._topics: dict[str, Registration] = {}
        self._inflight: set[asyncio.Task] = set()

    def register(self, integration: Integration) -> Registration:
        """Register an integration and validate its trigger.

        Args:
            integration: Integration instance

        Returns:
            The registration record

        Raises:
            ScheduleParseError: If the cron expression is invalid
            DuplicateTriggerError: If another integration already uses the topic
            IntegrationError: If the integration is already registered or
                lacks the handler its trigger needs
        """
        if id(integration) in self._registrations:
            raise IntegrationError(f"{integration.name} is already registered")

        trigger = integration.trigger
        registration = Registration(integration=integration, trigger=trigger)

        if trigger is not None:
            if trigger.is_scheduled:
                if not integration.implements("run"):
                    raise IntegrationError(f"{integration.name} has a schedule but no run()")
                registration.schedule = CronSchedule(trigger.schedule)

            if trigger.is_subscribed:
                if not integration.implements("handle_message"):
                    raise IntegrationError(
                        f"{integration.name} has a subscription but no handle_message()"
                    )
                owner = self._topics.get(trigger.topic)
                if owner is not None:
                    raise DuplicateTriggerError(
                        f"Topic '{trigger.topic}' is already used by {owner.integration.name}; "
                        f"cannot register {integration.name}"
                    )
                self._topics[trigger.topic] = registration

        self._registrations[id(integration)] = registration
        logger.debug(f"Registered {integration.name} (trigger={trigger.kind if trigger else None})")
        return registration

    async def unregister(self, integration: Integration) -> None:
        """Disarm an integration and release its topic."""
        registration = self._registrations.pop(id(integration), None)
        if registration is None:
            return

        await self._disarm(registration, unsubscribe=True)
        trigger = registration.trigger
        if trigger is not None and trigger.is_subscribed:
            self._topics.pop(trigger.topic, None)
        logger.debug(f"Unregistered {integration.name}")

    def registration(self, integration: Integration) -> Registration:
        """Look up the registration for an integration.

        Raises:
            KeyError: If it is not registered
        """
        return self._registrations[id(integration)]

    def is_registered(self, integration: Integration) -> bool:
        return id(integration) in self._registrations

    @property
    def registrations(self) -> list[Registration]:
        return list(self._registrations.values())

    async def arm(self, integration: Integration) -> None:
        """Start the integration's schedule and subscribe to its topic.

        Arming an already armed integration disarms it first, so there is
        never more than one timer per integration.

        Raises:
            KeyError: If the integration is not registered
            PublishError: If subscribing fails because the connection is gone
        """
        registration = self.registration(integration)
        if registration.armed:
            await self._disarm(registration)

        trigger = registration.trigger
        if trigger is None:
            return

        if registration.schedule is not None:
            start = self._clock()
            next_run = registration.schedule.next_after(start)
            registration.timer = asyncio.create_task(
                self._run_schedule(registration, start),
                name=f"schedule_{integration.name}",
            )
            logger.info(
                f"Scheduled {integration.name} with '{registration.schedule.expression}' "
                f"(next run {next_run.isoformat()})"
            )

        if trigger.is_subscribed:
            try:
                await self.client.subscribe(trigger.topic)
            except (IntegrationError, aiomqtt.MqttError):
                await self._disarm(registration)
                raise
            registration.subscribed = True
            logger.info(f"Subscribed {integration.name} to {trigger.topic}")

    async def invoke_now(self, integration: Integration) -> None:
        """Invoke a scheduled integration once, outside its schedule.

        Unlike a cron tick this is never skipped: if a message handler of the
        same integration is still running, it waits for it to finish.
        """
        await self._invoke_scheduled(self.registration(integration), reason="startup", wait=True)

    def dispatch(self, message: InboundMessage) -> int:
        """Hand an inbound message to every integration whose topic matches.

        Each matching integration is invoked in its own task.

        Returns:
            Number of integrations the message was dispatched to
        """
        topic = aiomqtt.Topic(message.topic)
        matched = 0
        for registration in list(self._registrations.values()):
            if not registration.subscribed:
                continue
            if not topic.matches(registration.trigger.topic):
                continue
            task = asyncio.create_task(
                self._invoke_message(registration, message),
                name=f"message_{registration.integration.name}",
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            matched += 1

        if not matched:
            logger.debug(f"No integration subscribed to {message.topic}")
        return matched

    async def disarm_all(self) -> None:
        """Cancel every timer and forget every subscription."""
        for registration in list(self._registrations.values()):
            await self._disarm(registration)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Disarm everything and give in-flight invocations a chance to finish."""
        await self.disarm_all()
        if not self._inflight:
            return

        logger.info(f"Waiting for {len(self._inflight)} in-flight invocation(s)")
        done, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} invocation(s) still running at shutdown")

    async def _disarm(self, registration: Registration, unsubscribe: bool = False) -> None:
        timer = registration.timer
        registration.timer = None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        if registration.subscribed and unsubscribe:
            try:
                await self.client.unsubscribe(registration.trigger.topic)
            except aiomqtt.MqttError as e:
                logger.warning(f"Failed to unsubscribe from {registration.trigger.topic}: {e}")
        registration.subscribed = False

    async def _run_schedule(self, registration: Registration, start: datetime) -> None:
        """Sleep until each cron fire time and invoke the integration.

        Ticks that pass while the process is not running, or while a
        previous invocation is still going, are not backfilled.
        """
        schedule = registration.schedule
        moment = start
        while True:
            fire_at = schedule.next_after(moment)
            # The sleep clock is monotonic and may drift from the wall clock
            delay = (fire_at - self._clock()).total_seconds()
            while delay > 0:
                await self._sleep(delay)
                delay = (fire_at - self._clock()).total_seconds()
            await self._invoke_scheduled(registration, reason="schedule")
            moment = max(self._clock(), fire_at)

    async def _invoke_scheduled(
        self,
        registration: Registration,
        reason: str,
        wait: bool = False,
    ) -> bool:
        integration = registration.integration
        if registration.lock.locked():
            if not wait:
                registration.skipped += 1
                logger.warning(f"{integration.name} is still running, skipping {reason} invocation")
                return False
            logger.info(f"{integration.name} is busy, {reason} run waits for it")

        async with registration.lock:
            registration.invocations += 1
            logger.debug(f"Running {integration.name} ({reason})")
            try:
                await integration.run()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                registration.failures += 1
                logger.error(f"{integration.name} failed during {reason} run: {e}", exc_info=True)
        return True

    async def _invoke_message(self, registration: Registration, message: InboundMessage) -> None:
        integration = registration.integration
        async with registration.lock:
            registration.invocations += 1
            logger.debug(f"Dispatching message on {message.topic} to {integration.name}")
            try:
                await integration.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                registration.failures += 1
                logger.error(
                    f"{integration.name} failed handling message on {message.topic}: {e}",
                    exc_info=True,
                )
