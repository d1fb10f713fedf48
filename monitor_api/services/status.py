from __future__ import annotations

from sqlalchemy.orm import Session

from ..mqtt.registry import BrokerRegistry
from ..persistence import repository as repo
from ..schemas import (
    ActiveTopicOut,
    BrokerRef,
    BrokerTopicsOut,
    ConnectionStatus,
    DatabaseStatus,
    MqttStatus,
    SystemStatus,
)


def get_system_status(db: Session, registry: BrokerRegistry) -> SystemStatus:
    """Estado combinado: conteos de BD + conexiones vivas del registro."""
    connections = [
        ConnectionStatus(
            broker_id=s["broker_id"],
            host=s["host"],
            port=s["port"],
            state=s["state"],
            is_connected=s["is_connected"],
            using_plaintext_fallback=s["using_plaintext_fallback"],
            subscribed_topics=s["subscribed_topics"],
            reconnect_attempts=s["reconnect_attempts"],
            client_id=s["client_id"],
        )
        for s in registry.get_status()
    ]
    connected = sum(1 for c in connections if c.is_connected)
    total_subscriptions = sum(len(c.subscribed_topics) for c in connections)

    topics = [
        ActiveTopicOut(
            id=t.id,
            topic=t.topic,
            broker=BrokerRef(id=t.broker_id, host=t.broker_host, port=t.broker_port),
        )
        for t in repo.list_active_topics_with_broker(db)
    ]
    brokers = [
        BrokerTopicsOut(
            id=b.id,
            host=b.host,
            port=b.port,
            topics_count=len(b.topics),
            topics=[t.topic for t in b.topics],
        )
        for b in repo.list_brokers_with_active_topics(db)
    ]

    return SystemStatus(
        database=DatabaseStatus(
            brokers=repo.count_brokers(db),
            active_topics=repo.count_active_topics(db),
        ),
        mqtt=MqttStatus(
            connected_brokers=f"{connected}/{len(connections)}",
            total_subscriptions=total_subscriptions,
            connections=connections,
        ),
        topics=topics,
        brokers=brokers,
    )
