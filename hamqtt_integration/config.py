"""Configuration management with Pydantic validation.

Supports three configuration sources (in priority order):
1. YAML config file (if given and present)
2. Environment variables (for Docker)
3. Default values
"""

import os
from pathlib import Path
from typing import Optional, Literal
import yaml
from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError


class MQTTConfig(BaseModel):
    """MQTT broker configuration."""

    node_id: Optional[str] = Field(
        default=None,
        description="Node identifier (MQTT client id and availability topic root)"
    )
    host: Optional[str] = Field(
        default=None,
        description="MQTT broker hostname or IP"
    )
    port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="MQTT broker port"
    )
    username: Optional[str] = Field(
        default=None,
        description="MQTT username"
    )
    password: Optional[str] = Field(
        default=None,
        description="MQTT password"
    )
    discovery_prefix: str = Field(
        default="homeassistant",
        description="Home Assistant MQTT discovery prefix"
    )
    qos: int = Field(
        default=1,
        ge=1,
        le=2,
        description="MQTT QoS level (at least once)"
    )
    keepalive: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Keepalive interval in seconds"
    )
    reconnect_interval: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="Seconds to wait before reconnecting"
    )

    @field_validator("node_id", "host", "username", "password", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        """Convert empty strings to None."""
        if v == "":
            return None
        return v

    def require(self) -> None:
        """Check that every field needed to connect is set.

        Raises:
            ValidationError: Naming the first missing field
        """
        for field in ("node_id", "host", "username", "password"):
            if getattr(self, field) is None:
                raise ValidationError(field)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    file: Optional[Path] = Field(
        default=None,
        description="Log file path (optional)"
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )


class AppConfig(BaseModel):
    """Complete application configuration."""

    mqtt: MQTTConfig = Field(
        default_factory=MQTTConfig,
        description="MQTT broker settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging settings"
    )
    startup: Optional[str] = Field(
        default=None,
        description="Import path of the startup callable (module:callable)"
    )


# Environment variable mapping
ENV_MAPPING = {
    # MQTT
    "MQTT_NODE_ID": ("mqtt", "node_id"),
    "MQTT_HOST": ("mqtt", "host"),
    "MQTT_PORT": ("mqtt", "port", int),
    "MQTT_USERNAME": ("mqtt", "username"),
    "MQTT_PASSWORD": ("mqtt", "password"),
    "MQTT_DISCOVERY_PREFIX": ("mqtt", "discovery_prefix"),
    "MQTT_QOS": ("mqtt", "qos", int),
    "MQTT_KEEPALIVE": ("mqtt", "keepalive", int),
    "MQTT_RECONNECT_INTERVAL": ("mqtt", "reconnect_interval", float),

    # Logging
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FILE": ("logging", "file"),

    # Application
    "INTEGRATION_STARTUP": (None, "startup"),
}


def _get_env_value(env_var: str, mapping: tuple):
    """Get environment variable value with optional type conversion."""
    value = os.environ.get(env_var)
    if value is None:
        return None

    if len(mapping) > 2:
        converter = mapping[2]
        try:
            return converter(value)
        except (ValueError, TypeError):
            return value
    return value


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables.

    Returns:
        AppConfig with values from environment (or defaults)
    """
    config_dict = {
        "mqtt": {},
        "logging": {},
    }

    for env_var, mapping in ENV_MAPPING.items():
        value = _get_env_value(env_var, mapping)
        if value is not None:
            section, key = mapping[0], mapping[1]
            if section is None:
                config_dict[key] = value
            else:
                config_dict[section][key] = value

    return AppConfig(**config_dict)


def load_config(config_path: str) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If a value has the wrong type or range
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, "r") as f:
        raw_config = yaml.safe_load(f) or {}

    raw_config = _substitute_env_vars(raw_config)

    return AppConfig(**raw_config)


def get_config(config_path: Optional[str] = None) -> AppConfig:
    """Get configuration from config file or environment variables.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Validated AppConfig instance
    """
    if config_path:
        path = Path(config_path)
        if path.exists():
            return load_config(config_path)

    return load_config_from_env()


def _substitute_env_vars(config):
    """Recursively substitute environment variables in config values.

    Environment variables are referenced as ${VAR_NAME} or $VAR_NAME.
    """
    if isinstance(config, dict):
        return {k: _substitute_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [_substitute_env_vars(item) for item in config]
    elif isinstance(config, str):
        if config.startswith("${") and config.endswith("}"):
            var_name = config[2:-1]
            return os.environ.get(var_name, config)
        elif config.startswith("$") and not config.startswith("${"):
            var_name = config[1:]
            return os.environ.get(var_name, config)
        return config
    else:
        return config


def create_default_config() -> str:
    """Generate default configuration as YAML string."""
    config = AppConfig()
    return yaml.dump(
        config.model_dump(mode="json", exclude_none=True),
        default_flow_style=False,
        sort_keys=False,
    )


def print_env_help() -> str:
    """Generate help text for environment variables."""
    lines = [
        "Environment Variables:",
        "",
        "  MQTT:",
        "    MQTT_NODE_ID            Node identifier (required)",
        "    MQTT_HOST               Broker hostname/IP (required)",
        "    MQTT_PORT               Broker port (default: 1883)",
        "    MQTT_USERNAME           Username (required)",
        "    MQTT_PASSWORD           Password (required)",
        "    MQTT_DISCOVERY_PREFIX   HA discovery prefix (default: homeassistant)",
        "    MQTT_QOS                QoS level 1-2 (default: 1)",
        "    MQTT_KEEPALIVE          Keepalive seconds (default: 60)",
        "    MQTT_RECONNECT_INTERVAL Seconds between reconnects (default: 5)",
        "",
        "  Application:",
        "    INTEGRATION_STARTUP     Startup callable, e.g. mypkg.startup:configure",
        "",
        "  Logging:",
        "    LOG_LEVEL               DEBUG, INFO, WARNING, ERROR (default: INFO)",
        "    LOG_FILE                Log file path (optional)",
    ]
    return "\n".join(lines)
