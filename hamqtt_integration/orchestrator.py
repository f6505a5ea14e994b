"""Per-connection startup sequence for integrations."""

import logging

from .integration import Integration
from .mqtt.publisher import Publisher
from .triggers.registry import TriggerRegistry

logger = logging.getLogger(__name__)


class Orchestrator:
    """Publishes discovery documents and arms triggers on every connection.

    For each integration, in registration order:

    1. publish its discovery document (if it has one)
    2. arm its trigger
    3. if it is scheduled with ``run_on_startup``, invoke it once

    A failure in step 1 or 2 skips that integration until the next
    connection. Failures inside the integration's own work are logged by
    the registry. Neither affects the other integrations.
    """

    def __init__(self, publisher: Publisher, registry: TriggerRegistry):
        """Initialize the orchestrator.

        Args:
            publisher: Publisher used for discovery documents
            registry: Trigger registry the integrations are armed in
        """
        self.publisher = publisher
        self.registry = registry
        self._integrations: list[Integration] = []
        self._cycles = 0
        self._last_skipped: list[str] = []

    @property
    def integrations(self) -> list[Integration]:
        return list(self._integrations)

    @property
    def cycles(self) -> int:
        """Number of connection cycles processed."""
        return self._cycles

    @property
    def last_skipped(self) -> list[str]:
        """Names of integrations skipped in the last connection cycle."""
        return list(self._last_skipped)

    def add(self, integration: Integration) -> None:
        """Register an integration.

        Raises:
            ScheduleParseError, DuplicateTriggerError, IntegrationError:
                If its trigger is invalid
        """
        self.registry.register(integration)
        self._integrations.append(integration)
        logger.info(f"Added integration {integration.name}")

    async def remove(self, integration: Integration) -> None:
        """Disarm and unregister an integration."""
        if integration not in self._integrations:
            return
        await self.registry.unregister(integration)
        self._integrations.remove(integration)
        logger.info(f"Removed integration {integration.name}")

    async def on_connected(self) -> None:
        """Run the startup sequence for every integration.

        Previously armed timers are cancelled first so reconnecting never
        leaves duplicate schedules behind.
        """
        self._cycles += 1
        self._last_skipped = []
        await self.registry.disarm_all()

        logger.info(
            f"Starting {len(self._integrations)} integration(s) (connection cycle #{self._cycles})"
        )
        for integration in list(self._integrations):
            await self._start(integration)

        if self._last_skipped:
            logger.warning(f"Skipped integrations this cycle: {', '.join(self._last_skipped)}")

    async def on_disconnected(self) -> None:
        """Cancel all timers and subscriptions."""
        await self.registry.disarm_all()

    async def _start(self, integration: Integration) -> None:
        try:
            document = integration.discovery_document()
            if document is not None:
                await self.publisher.publish_discovery_document(document)
        except Exception as e:
            logger.error(
                f"Failed to publish discovery document for {integration.name}: {e}",
                exc_info=True,
            )
            self._last_skipped.append(integration.name)
            return

        try:
            await self.registry.arm(integration)
        except Exception as e:
            logger.error(f"Failed to arm trigger for {integration.name}: {e}", exc_info=True)
            self._last_skipped.append(integration.name)
            return

        trigger = integration.trigger
        if trigger is not None and trigger.is_scheduled and trigger.run_on_startup:
            logger.info(f"Running {integration.name} on startup")
            await self.registry.invoke_now(integration)
