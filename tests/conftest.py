"""Shared fixtures: an in-memory connection and a controllable clock."""

from datetime import datetime

import pytest

from helpers import FakeClock, FakeMQTTClient
from hamqtt_integration.config import MQTTConfig
from hamqtt_integration.mqtt.publisher import Publisher
from hamqtt_integration.orchestrator import Orchestrator
from hamqtt_integration.triggers.registry import TriggerRegistry


@pytest.fixture
def mqtt_config():
    return MQTTConfig(
        node_id="test_node",
        host="broker.local",
        username="user",
        password="secret",
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def fake_client(mqtt_config, events):
    return FakeMQTTClient(mqtt_config, events)


@pytest.fixture
def publisher(fake_client, mqtt_config):
    return Publisher(fake_client, mqtt_config)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 0, 0))


@pytest.fixture
async def registry(fake_client, clock):
    registry = TriggerRegistry(fake_client, clock=clock, sleep=clock.sleep)
    yield registry
    await registry.shutdown(timeout=0.1)


@pytest.fixture
def orchestrator(publisher, registry):
    return Orchestrator(publisher, registry)
