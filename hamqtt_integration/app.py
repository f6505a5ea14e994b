"""Application lifecycle for hamqtt_integration."""

import asyncio
import logging
import signal
from datetime import datetime
from typing import Callable, Optional, Union

import aiomqtt

from .config import AppConfig, get_config
from .integration import Integration
from .mqtt.client import MQTTClient
from .mqtt.publisher import Publisher
from .orchestrator import Orchestrator
from .triggers.registry import TriggerRegistry
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)

# Registers integrations on a freshly built app
Startup = Callable[["IntegrationApp"], None]


class IntegrationApp:
    """Main application class.

    Owns the MQTT connection and runs the integrations registered on it.
    On every (re)connection the orchestrator publishes discovery documents
    and arms triggers; inbound messages are dispatched by the registry.
    """

    def __init__(self, config: Union[AppConfig, str, None] = None):
        """Initialize the application.

        Args:
            config: AppConfig instance, path to YAML config file, or None for env/defaults
        """
        if isinstance(config, AppConfig):
            self.config = config
        elif isinstance(config, str):
            self.config = get_config(config)
        else:
            self.config = get_config()

        self.running = False
        self._shutdown_event = asyncio.Event()

        self.client = MQTTClient(self.config.mqtt)
        self.publisher = Publisher(self.client, self.config.mqtt)
        self.registry = TriggerRegistry(self.client)
        self.orchestrator = Orchestrator(self.publisher, self.registry)
        self.client.add_connect_callback(self.orchestrator.on_connected)

        self._stats = {
            "connections": 0,
            "connection_errors": 0,
            "messages": 0,
            "start_time": None,
        }

    def add_integration(self, integration: Integration) -> Integration:
        """Register an integration.

        Raises:
            ScheduleParseError: If its cron expression is invalid
            DuplicateTriggerError: If its topic is already used
        """
        self.orchestrator.add(integration)
        return integration

    def add_integrations(self, *integrations: Integration) -> None:
        for integration in integrations:
            self.add_integration(integration)

    @property
    def integrations(self) -> list[Integration]:
        return self.orchestrator.integrations

    async def run(self) -> None:
        """Run until a shutdown signal arrives.

        Reconnects after ``reconnect_interval`` seconds whenever the broker
        connection is lost.

        Raises:
            ValidationError: If a required MQTT setting is missing
        """
        setup_logging(
            level=self.config.logging.level,
            log_file=self.config.logging.file,
            format_string=self.config.logging.format,
        )

        self.config.mqtt.require()

        logger.info(f"Starting {self.config.mqtt.node_id} with {len(self.integrations)} integration(s)")
        self._stats["start_time"] = datetime.now()
        self.running = True
        self._setup_signal_handlers()

        try:
            while self.running and not self._shutdown_event.is_set():
                try:
                    await self.client.connect()
                    self._stats["connections"] += 1
                    await self._listen()
                except aiomqtt.MqttError as e:
                    self._stats["connection_errors"] += 1
                    logger.error(f"MQTT error: {e}")
                    self.client.mark_disconnected()

                await self.orchestrator.on_disconnected()
                await self.client.disconnect()

                if self._shutdown_event.is_set():
                    break

                interval = self.config.mqtt.reconnect_interval
                logger.info(f"Reconnecting in {interval:g}s")
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    continue

        except asyncio.CancelledError:
            logger.info("Application cancelled")
        finally:
            await self.stop()

    async def _listen(self) -> None:
        """Dispatch inbound messages until shutdown or connection loss."""
        listener = asyncio.create_task(self._message_loop(), name="mqtt_messages")
        stopper = asyncio.create_task(self._shutdown_event.wait(), name="shutdown")
        try:
            done, _ = await asyncio.wait(
                {listener, stopper},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (listener, stopper):
                task.cancel()

        if listener in done:
            # Re-raises MqttError on connection loss
            listener.result()

    async def _message_loop(self) -> None:
        async for message in self.client.messages():
            self._stats["messages"] += 1
            self.registry.dispatch(message)

    async def stop(self) -> None:
        """Stop the application.

        In-flight invocations get a short grace period; anything still
        running afterwards is cancelled.
        """
        if not self.running:
            return
        logger.info(f"Stopping {self.config.mqtt.node_id}")
        self.running = False
        self._shutdown_event.set()

        await self.registry.shutdown()
        try:
            await self.client.disconnect()
        except aiomqtt.MqttError as e:
            logger.error(f"Error disconnecting MQTT: {e}")

        logger.info(
            f"Statistics: connections={self._stats['connections']}, "
            f"errors={self._stats['connection_errors']}, "
            f"messages={self._stats['messages']}"
        )

    def request_shutdown(self) -> None:
        """Ask ``run()`` to return."""
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(sig):
            logger.info(f"Received signal {sig.name}, initiating shutdown")
            self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
            except (NotImplementedError, RuntimeError):
                # Not available on Windows or outside the main thread
                logger.debug(f"Cannot install handler for {sig.name}")

    @property
    def stats(self) -> dict:
        """Get application statistics."""
        return {
            **self._stats,
            "uptime": (
                str(datetime.now() - self._stats["start_time"])
                if self._stats["start_time"]
                else None
            ),
            "state": str(self.client.state),
            "integrations": len(self.integrations),
        }


async def run_app(
    config: Union[AppConfig, str, None] = None,
    startup: Optional[Startup] = None,
) -> None:
    """Run the application.

    Args:
        config: AppConfig instance, path to config file, or None for env/defaults
        startup: Callable registering integrations on the app
    """
    app = IntegrationApp(config)
    if startup is not None:
        startup(app)
    await app.run()
