"""Tests del registro de brokers y del lifecycle (bootstrap / shutdown)."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import drain
from monitor_api.mqtt.lifecycle import LifecycleController
from monitor_api.mqtt.models import BrokerEndpoint, ConnectionState
from monitor_api.mqtt.registry import BrokerRegistry
from monitor_api.mqtt.supervisor import STATUS_OFFLINE
from monitor_api.persistence import repository as repo


@pytest.fixture
def forwarder():
    return MagicMock()


@pytest.fixture
def registry(store, forwarder, policy, client_factory, tls_factory, scheduler):
    reg = BrokerRegistry(
        store,
        forwarder,
        policy,
        client_factory=client_factory,
        tls_context_factory=tls_factory,
        scheduler=scheduler,
    )
    yield reg
    reg.shutdown()


class TestRegister:
    def test_register_creates_supervisor_and_connects(self, registry, plain_endpoint, client_factory):
        assert registry.register(plain_endpoint) is True

        supervisor = registry.get(plain_endpoint.id)
        assert supervisor is not None
        assert supervisor.state == ConnectionState.CONNECTING
        assert plain_endpoint.id in registry
        assert len(client_factory.clients) == 1

    def test_register_twice_is_noop(self, registry, plain_endpoint, client_factory):
        registry.register(plain_endpoint)

        assert registry.register(plain_endpoint) is False
        assert len(registry) == 1
        assert len(client_factory.clients) == 1

    def test_unreachable_broker_does_not_fail(self, registry, plain_endpoint):
        registry._client_factory = MagicMock(side_effect=OSError("unreachable"))

        assert registry.register(plain_endpoint) is True
        supervisor = registry.get(plain_endpoint.id)
        assert supervisor.state == ConnectionState.DISCONNECTED
        assert supervisor.reconnect_timer_active

    def test_messages_reach_the_forwarder(self, registry, plain_endpoint, client_factory, forwarder):
        registry.register(plain_endpoint)
        client = client_factory.last
        client.fire_connect()

        client.fire_message("sensors/a", b"{}")
        drain(registry.get(plain_endpoint.id))

        message = forwarder.forward.call_args.args[0]
        assert (message.broker_id, message.topic, message.payload) == (plain_endpoint.id, "sensors/a", b"{}")


class TestDeregister:
    def test_unknown_id_is_noop(self, registry):
        assert registry.deregister("does-not-exist") is False

    def test_deregister_publishes_offline_and_closes(self, registry, plain_endpoint, client_factory):
        registry.register(plain_endpoint)
        client = client_factory.last
        client.fire_connect()
        supervisor = registry.get(plain_endpoint.id)

        assert registry.deregister(plain_endpoint.id) is True

        assert plain_endpoint.id not in registry
        assert client.published[-1] == (supervisor.status_topic, STATUS_OFFLINE, 1, True)
        assert client.loop_stopped

    def test_deregister_cancels_reconnect_and_ignores_late_connect(self, registry, plain_endpoint, client_factory, scheduler):
        registry.register(plain_endpoint)
        client_factory.last.fire_connect_fail()
        scheduler.fire("reconnect-")
        scheduler.fire("connect-")
        in_flight = client_factory.last
        supervisor = registry.get(plain_endpoint.id)

        registry.deregister(plain_endpoint.id)
        in_flight.fire_connect()

        assert scheduler.pending() == []
        assert supervisor.state == ConnectionState.DISCONNECTED
        assert plain_endpoint.id not in registry
        assert in_flight.published == []


class TestSubscriptions:
    def test_subscribe_unknown_broker(self, registry):
        assert registry.subscribe("nope", "sensors/a") is False
        assert registry.unsubscribe("nope", "sensors/a") is False

    def test_subscribe_and_unsubscribe(self, registry, plain_endpoint, client_factory):
        registry.register(plain_endpoint)
        client_factory.last.fire_connect()
        drain(registry.get(plain_endpoint.id))

        assert registry.subscribe(plain_endpoint.id, "sensors/a") is True
        assert registry.get_status()[0]["subscribed_topics"] == ["sensors/a"]

        assert registry.unsubscribe(plain_endpoint.id, "sensors/a") is True
        assert registry.get_status()[0]["subscribed_topics"] == []

    def test_refresh_only_reconciles_connected_brokers(self, registry, db, client_factory):
        broker_a = repo.insert_broker(db, "a.local", 1883)
        broker_b = repo.insert_broker(db, "b.local", 1883)
        repo.insert_topic(db, "a/temp", broker_a)
        repo.insert_topic(db, "b/temp", broker_b)
        db.commit()

        registry.register(BrokerEndpoint(id=broker_a, host="a.local", port=1883))
        client_a = client_factory.last
        registry.register(BrokerEndpoint(id=broker_b, host="b.local", port=1883))
        client_b = client_factory.last
        client_a.fire_connect()
        drain(registry.get(broker_a))

        assert registry.refresh_subscriptions() == 1
        assert client_a.subscribed == ["a/temp", "a/temp"]
        assert client_b.subscribed == []


class TestStatus:
    def test_status_snapshot(self, registry, plain_endpoint, client_factory):
        registry.register(plain_endpoint)
        client_factory.last.fire_connect()

        [status] = registry.get_status()

        assert status["broker_id"] == plain_endpoint.id
        assert status["host"] == "mqtt.local"
        assert status["port"] == 1883
        assert status["state"] == "connected"
        assert status["is_connected"] is True
        assert status["using_plaintext_fallback"] is False
        assert status["reconnect_attempts"] == 0
        assert status["client_id"].startswith("iot-monitor-")

    def test_shutdown_closes_everything(self, registry, client_factory, scheduler):
        registry.register(BrokerEndpoint(id="b-1", host="one", port=1883))
        registry.register(BrokerEndpoint(id="b-2", host="two", port=1883))
        first, second = client_factory.clients
        first.fire_connect()
        second.fire_connect_fail()

        registry.shutdown()

        assert len(registry) == 0
        assert first.published[-1][1] == STATUS_OFFLINE
        assert second.published == []
        assert first.loop_stopped
        assert scheduler.pending() == []


class TestLifecycle:
    def test_bootstrap_registers_brokers_from_store(self, registry, store, db, client_factory):
        broker_id = repo.insert_broker(db, "mqtt.local", 1883, "dev", "secret")
        repo.insert_topic(db, "sensors/a", broker_id)
        repo.insert_topic(db, "sensors/off", broker_id, is_active=False)
        db.commit()
        lifecycle = LifecycleController(registry, store)

        assert lifecycle.bootstrap() is True

        assert lifecycle.is_initialized
        assert registry.broker_ids() == [broker_id]
        assert client_factory.last.credentials == ("dev", "secret")

        client_factory.last.fire_connect()
        drain(registry.get(broker_id))
        assert client_factory.last.subscribed == ["sensors/a"]

    def test_bootstrap_retries_on_store_failure(self, registry, policy, scheduler):
        failing_store = MagicMock()
        failing_store.list_brokers_with_active_topics.side_effect = [
            OperationalError("SELECT", {}, Exception("db down")),
            [],
        ]
        lifecycle = LifecycleController(registry, failing_store, policy, scheduler=scheduler)

        assert lifecycle.bootstrap() is False
        task = scheduler.pending("bootstrap")[0]
        assert task.delay == policy.bootstrap_retry_delay_seconds
        assert lifecycle.retry_pending

        task.fire()

        assert lifecycle.is_initialized
        assert not lifecycle.retry_pending

    def test_shutdown_cancels_retry_and_closes_registry(self, registry, scheduler, client_factory):
        failing_store = MagicMock()
        failing_store.list_brokers_with_active_topics.side_effect = RuntimeError("db down")
        registry.register(BrokerEndpoint(id="b-1", host="one", port=1883))
        lifecycle = LifecycleController(registry, failing_store, scheduler=scheduler)
        lifecycle.bootstrap()

        lifecycle.shutdown()

        assert scheduler.pending() == []
        assert len(registry) == 0
        assert lifecycle.bootstrap() is False
