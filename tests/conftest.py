"""Fixtures y dobles de prueba compartidos.

- FakeMQTTClient: reemplaza a paho.mqtt.client.Client (sin red)
- ManualScheduler: los timers se disparan a mano desde el test
- sqlite en memoria (StaticPool) para la persistencia
"""

from __future__ import annotations

import time
from typing import Any, Callable, List, Optional

import pytest
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from monitor_api.mqtt.config import ConnectionPolicy
from monitor_api.mqtt.models import BrokerEndpoint
from monitor_api.persistence import MonitorStore, ensure_schema
from common.db import make_session_factory


SINGLE_LINE_CA = (
    "-----BEGIN CERTIFICATE-----"
    + "MIIB" * 40
    + "-----END CERTIFICATE-----"
)


# =============================================================================
# FAKE PAHO CLIENT
# =============================================================================


class _Message:
    def __init__(self, topic: str, payload: bytes):
        self.topic = topic
        self.payload = payload


class FakeMQTTClient:
    """Cliente paho falso: registra llamadas y permite disparar callbacks."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        self.on_connect: Optional[Callable] = None
        self.on_connect_fail: Optional[Callable] = None
        self.on_disconnect: Optional[Callable] = None
        self.on_message: Optional[Callable] = None
        self.on_subscribe: Optional[Callable] = None
        self.on_unsubscribe: Optional[Callable] = None

        self.connect_timeout = None
        self.credentials = None
        self.will = None
        self.tls_context = None
        self.connected_to = None
        self.loop_started = False
        self.loop_stopped = False
        self.disconnected = False

        self.published: List[tuple] = []
        self.subscribed: List[str] = []
        self.unsubscribed: List[str] = []

        self.auto_ack = True
        self.suback_code = 1
        self._mid = 0

    # --- API paho usada por el supervisor ---

    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def will_set(self, topic, payload=None, qos=0, retain=False):
        self.will = (topic, payload, qos, retain)

    def tls_set_context(self, context):
        self.tls_context = context

    def connect_async(self, host, port=1883, keepalive=60):
        self.connected_to = (host, port, keepalive)

    def loop_start(self):
        self.loop_started = True

    def loop_stop(self):
        self.loop_stopped = True

    def disconnect(self):
        self.disconnected = True

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))

    def subscribe(self, topic, qos=0):
        self._mid += 1
        self.subscribed.append(topic)
        if self.auto_ack:
            self.on_subscribe(self, None, self._mid, [ReasonCode(PacketTypes.SUBACK, identifier=self.suback_code)], None)
        return 0, self._mid

    def unsubscribe(self, topic):
        self._mid += 1
        self.unsubscribed.append(topic)
        if self.auto_ack:
            self.on_unsubscribe(self, None, self._mid, [ReasonCode(PacketTypes.UNSUBACK, identifier=0)], None)
        return 0, self._mid

    # --- helpers de test ---

    @property
    def port(self) -> Optional[int]:
        return self.connected_to[1] if self.connected_to else None

    def fire_connect(self, code: int = 0):
        self.on_connect(self, None, None, ReasonCode(PacketTypes.CONNACK, identifier=code), None)

    def fire_not_authorized(self):
        self.fire_connect(135)

    def fire_connect_fail(self):
        self.on_connect_fail(self, None)

    def fire_disconnect(self, code: int = 0x80):
        self.on_disconnect(self, None, None, ReasonCode(PacketTypes.DISCONNECT, identifier=code), None)

    def fire_message(self, topic: str, payload: bytes):
        self.on_message(self, None, _Message(topic, payload))


class FakeClientFactory:
    def __init__(self, client_class: type = FakeMQTTClient):
        self.client_class = client_class
        self.clients: List[FakeMQTTClient] = []

    def __call__(self, client_id: str) -> FakeMQTTClient:
        client = self.client_class(client_id)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeMQTTClient:
        return self.clients[-1]


# =============================================================================
# MANUAL SCHEDULER
# =============================================================================


class ManualTask:
    def __init__(self, delay: float, func: Callable[[], Any], repeat: bool, name: Optional[str]):
        self.delay = delay
        self.func = func
        self.repeat = repeat
        self.name = name or "task"
        self.cancelled = False
        self.finished = False

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.finished

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.active:
            return
        if not self.repeat:
            self.finished = True
        self.func()


class ManualScheduler:
    def __init__(self):
        self.tasks: List[ManualTask] = []

    def call_later(self, delay, func, name=None) -> ManualTask:
        task = ManualTask(delay, func, False, name)
        self.tasks.append(task)
        return task

    def call_every(self, interval, func, name=None) -> ManualTask:
        task = ManualTask(interval, func, True, name)
        self.tasks.append(task)
        return task

    def pending(self, prefix: str = "") -> List[ManualTask]:
        return [t for t in self.tasks if t.active and t.name.startswith(prefix)]

    def fire(self, prefix: str) -> ManualTask:
        """Dispara la primera tarea activa cuyo nombre empieza con prefix."""
        tasks = self.pending(prefix)
        assert tasks, f"no pending task with prefix {prefix!r}"
        tasks[0].fire()
        return tasks[0]


# =============================================================================
# HELPERS
# =============================================================================


def drain(supervisor, timeout: float = 2.0) -> None:
    """Espera a que el worker del supervisor procese lo encolado."""
    supervisor._worker.submit(lambda: None).result(timeout=timeout)


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("MONITOR_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.delenv("MONITOR_API_KEY", raising=False)
    monkeypatch.setenv("ENVIRONMENT", "development")


@pytest.fixture
def policy() -> ConnectionPolicy:
    return ConnectionPolicy(ack_timeout_seconds=1.0, max_reconnect_attempts=10)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def tls_factory():
    contexts = []

    def factory(ca_pem: str):
        contexts.append(ca_pem)
        return {"ca": ca_pem}

    factory.contexts = contexts
    return factory


@pytest.fixture
def plain_endpoint() -> BrokerEndpoint:
    return BrokerEndpoint(id="broker-plain-0001", host="mqtt.local", port=1883, username="dev", password="secret")


@pytest.fixture
def secure_endpoint() -> BrokerEndpoint:
    return BrokerEndpoint(
        id="broker-secure-0001",
        host="mqtt.example.com",
        port=8883,
        username="iot",
        password="secret",
        ca_cert=SINGLE_LINE_CA,
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(session_factory) -> MonitorStore:
    return MonitorStore(session_factory)


@pytest.fixture
def make_supervisor(policy, scheduler, client_factory, tls_factory):
    from monitor_api.mqtt.supervisor import ConnectionSupervisor

    created = []

    def _make(endpoint: BrokerEndpoint, topic_source=None, on_message=None, policy_override=None) -> ConnectionSupervisor:
        supervisor = ConnectionSupervisor(
            endpoint,
            policy_override or policy,
            topic_source=topic_source,
            on_message=on_message,
            client_factory=client_factory,
            tls_context_factory=tls_factory,
            scheduler=scheduler,
        )
        created.append(supervisor)
        return supervisor

    yield _make

    for supervisor in created:
        supervisor.close()
