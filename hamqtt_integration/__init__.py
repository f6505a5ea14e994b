"""Scaffolding for Home Assistant MQTT integrations.

Define integrations that publish discovery documents and run on a cron
schedule, on MQTT messages, or both.
"""

__version__ = "0.1.0"

from .errors import (
    IntegrationError,
    SchemaError,
    PublishError,
    DuplicateTriggerError,
    ScheduleParseError,
    ValidationError,
)
from .models import Device, Origin, Component, DiscoveryDocument
from .mqtt import MQTTClient, InboundMessage, Publisher
from .integration import Integration, Trigger, TriggerKind
from .triggers import CronSchedule, TriggerRegistry
from .orchestrator import Orchestrator
from .app import IntegrationApp, run_app
from .builder import IntegrationAppBuilder

__all__ = [
    "__version__",
    # Errors
    "IntegrationError",
    "SchemaError",
    "PublishError",
    "DuplicateTriggerError",
    "ScheduleParseError",
    "ValidationError",
    # Discovery models
    "Device",
    "Origin",
    "Component",
    "DiscoveryDocument",
    # Runtime
    "MQTTClient",
    "InboundMessage",
    "Publisher",
    "Integration",
    "Trigger",
    "TriggerKind",
    "CronSchedule",
    "TriggerRegistry",
    "Orchestrator",
    "IntegrationApp",
    "IntegrationAppBuilder",
    "run_app",
]
