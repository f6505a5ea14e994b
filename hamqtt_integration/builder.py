"""Fluent builder for IntegrationApp."""

from pathlib import Path
from typing import Optional, Union

from .app import IntegrationApp, Startup
from .config import AppConfig, LoggingConfig, MQTTConfig, get_config


class IntegrationAppBuilder:
    """Collects connection settings and a startup callable.

    Example::

        app = (
            IntegrationAppBuilder()
            .with_node_id("weather")
            .with_host("broker.local")
            .with_credentials("user", "secret")
            .with_startup(configure)
            .build()
        )
        asyncio.run(app.run())
    """

    def __init__(self):
        self._node_id: Optional[str] = None
        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._username: Optional[str] = None
        self._password: Optional[str] = None
        self._discovery_prefix: Optional[str] = None
        self._log_level: Optional[str] = None
        self._log_file: Optional[Path] = None
        self._startup: Optional[Startup] = None
        self._base: Optional[AppConfig] = None

    def from_config(self, config: Union[AppConfig, str, None] = None) -> "IntegrationAppBuilder":
        """Start from an existing configuration (file, env or object).

        Values set with the other ``with_*`` methods take precedence.
        """
        self._base = config if isinstance(config, AppConfig) else get_config(config)
        return self

    def with_node_id(self, node_id: str) -> "IntegrationAppBuilder":
        self._node_id = node_id
        return self

    def with_host(self, host: str) -> "IntegrationAppBuilder":
        self._host = host
        return self

    def with_port(self, port: int) -> "IntegrationAppBuilder":
        self._port = port
        return self

    def with_credentials(self, username: str, password: str) -> "IntegrationAppBuilder":
        self._username = username
        self._password = password
        return self

    def with_discovery_prefix(self, prefix: str) -> "IntegrationAppBuilder":
        self._discovery_prefix = prefix
        return self

    def with_log_level(self, level: str, log_file: Optional[Path] = None) -> "IntegrationAppBuilder":
        self._log_level = level.upper()
        self._log_file = log_file
        return self

    def with_startup(self, startup: Startup) -> "IntegrationAppBuilder":
        """Set the callable that registers integrations on the built app."""
        self._startup = startup
        return self

    def build_config(self) -> AppConfig:
        """Merge the builder settings over the base configuration.

        Raises:
            ValidationError: If node_id, host, username or password is missing
        """
        base = self._base or AppConfig()
        overrides = {
            "node_id": self._node_id,
            "host": self._host,
            "port": self._port,
            "username": self._username,
            "password": self._password,
            "discovery_prefix": self._discovery_prefix,
        }
        mqtt = MQTTConfig(**{
            **base.mqtt.model_dump(),
            **{k: v for k, v in overrides.items() if v is not None},
        })
        mqtt.require()

        logging_config = base.logging
        if self._log_level is not None:
            logging_config = LoggingConfig(
                level=self._log_level,
                file=self._log_file,
                format=base.logging.format,
            )

        return AppConfig(mqtt=mqtt, logging=logging_config, startup=base.startup)

    def build(self) -> IntegrationApp:
        """Validate the settings and create the app.

        Raises:
            ValidationError: If a required setting is missing
        """
        app = IntegrationApp(self.build_config())
        if self._startup is not None:
            self._startup(app)
        return app
