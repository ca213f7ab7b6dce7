from datetime import datetime, timedelta, timezone

import pytest

from walkin_queue.coordinator import CounterCoordinator
from walkin_queue.directory import ServiceDirectory
from walkin_queue.models import Service
from walkin_queue.operations import QueueService
from walkin_queue.state_machine import QueueStateMachine
from walkin_queue.store import QueueStore


class FakeClock:
    """Deterministic clock; every reading moves time forward one second."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingSink:
    def __init__(self):
        self.published = []

    def publish(self, topic, payload):
        self.published.append((topic, payload))

    def on(self, topic):
        return [payload for t, payload in self.published if t == topic]


class FakeMqtt:
    """Stands in for MqttClient: records publishes and subscriptions."""

    def __init__(self):
        self.published = []
        self.subscriptions = []
        self.handlers = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def publish(self, topic, message):
        self.published.append((topic, message))

    def replies(self, topic):
        return [m for t, m in self.published if t == topic]


REGISTRAR = Service(service_id="reg", name="Registrar", queue_prefix="REG", estimated_service_time=5)
CLINIC = Service(service_id="cli", name="Clinic", estimated_service_time=10)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return ServiceDirectory([REGISTRAR, CLINIC])


@pytest.fixture
def store():
    return QueueStore(timeout=1.0)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def machine(store, directory, clock):
    return QueueStateMachine(store=store, services=directory, clock=clock)


@pytest.fixture
def coordinator(store):
    return CounterCoordinator(store)


@pytest.fixture
def queue(directory, sink, clock):
    return QueueService.in_memory(directory, sink=sink, timeout=1.0, clock=clock)


def open_counter(coordinator, counter_id="C1", service_id="reg", number=1):
    return coordinator.register_counter(counter_id, service_id=service_id, counter_number=number, status="open")
