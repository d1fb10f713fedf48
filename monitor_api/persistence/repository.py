"""Repositorio de brokers y tópicos - operaciones SQL.

Todas las funciones reciben la sesión; el commit lo hace quien llama.
"""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from .records import ActiveTopicView, BrokerRecord, TopicRecord


def _new_id() -> str:
    return str(uuid.uuid4())


def _topic_from_row(row) -> TopicRecord:
    return TopicRecord(
        id=row["id"],
        topic=row["topic"],
        broker_id=row["broker_id"],
        is_active=bool(row["is_active"]),
    )


def _broker_from_row(row, topics: Optional[List[TopicRecord]] = None) -> BrokerRecord:
    return BrokerRecord(
        id=row["id"],
        host=row["host"],
        port=int(row["port"]),
        username=row["username"],
        password=row["password"],
        ca_cert=row["ca_cert"],
        topics=topics or [],
    )


# ---------------------------------------------------------------------------
# Brokers
# ---------------------------------------------------------------------------


def insert_broker(
    db: Session,
    host: str,
    port: int,
    username: str | None = None,
    password: str | None = None,
    ca_cert: str | None = None,
) -> str:
    """Inserta un broker y devuelve su id."""
    broker_id = _new_id()
    db.execute(
        text(
            """
            INSERT INTO brokers (id, host, port, username, password, ca_cert)
            VALUES (:id, :host, :port, :username, :password, :ca_cert)
            """
        ),
        {
            "id": broker_id,
            "host": host,
            "port": port,
            "username": username,
            "password": password,
            "ca_cert": ca_cert,
        },
    )
    return broker_id


def get_broker(db: Session, broker_id: str) -> BrokerRecord | None:
    row = (
        db.execute(
            text(
                """
                SELECT id, host, port, username, password, ca_cert
                FROM brokers
                WHERE id = :id
                """
            ),
            {"id": broker_id},
        )
        .mappings()
        .first()
    )
    return _broker_from_row(row) if row else None


def delete_broker(db: Session, broker_id: str) -> None:
    """Elimina el broker y sus tópicos."""
    db.execute(text("DELETE FROM topics WHERE broker_id = :id"), {"id": broker_id})
    db.execute(text("DELETE FROM brokers WHERE id = :id"), {"id": broker_id})


def list_brokers(db: Session) -> List[BrokerRecord]:
    rows = (
        db.execute(
            text(
                """
                SELECT id, host, port, username, password, ca_cert
                FROM brokers
                ORDER BY created_at, id
                """
            )
        )
        .mappings()
        .all()
    )
    return [_broker_from_row(r) for r in rows]


def count_brokers(db: Session) -> int:
    return int(db.execute(text("SELECT COUNT(*) FROM brokers")).scalar_one())


def list_brokers_with_active_topics(db: Session) -> List[BrokerRecord]:
    """Todos los brokers, cada uno con sus tópicos activos."""
    topics_by_broker: Dict[str, List[TopicRecord]] = {}
    for topic in list_active_topics(db):
        topics_by_broker.setdefault(topic.broker_id, []).append(topic)

    return [
        BrokerRecord(
            id=b.id,
            host=b.host,
            port=b.port,
            username=b.username,
            password=b.password,
            ca_cert=b.ca_cert,
            topics=topics_by_broker.get(b.id, []),
        )
        for b in list_brokers(db)
    ]


# ---------------------------------------------------------------------------
# Tópicos
# ---------------------------------------------------------------------------


def insert_topic(db: Session, topic: str, broker_id: str, is_active: bool = True) -> str:
    topic_id = _new_id()
    db.execute(
        text(
            """
            INSERT INTO topics (id, topic, broker_id, is_active)
            VALUES (:id, :topic, :broker_id, :is_active)
            """
        ),
        {
            "id": topic_id,
            "topic": topic,
            "broker_id": broker_id,
            "is_active": bool(is_active),
        },
    )
    return topic_id


def get_topic(db: Session, topic_id: str) -> TopicRecord | None:
    row = (
        db.execute(
            text("SELECT id, topic, broker_id, is_active FROM topics WHERE id = :id"),
            {"id": topic_id},
        )
        .mappings()
        .first()
    )
    return _topic_from_row(row) if row else None


def delete_topic(db: Session, topic_id: str) -> None:
    db.execute(text("DELETE FROM topics WHERE id = :id"), {"id": topic_id})


def find_topic_by_value(db: Session, topic: str) -> TopicRecord | None:
    """Búsqueda global: el valor del tópico es único entre todos los brokers."""
    row = (
        db.execute(
            text("SELECT id, topic, broker_id, is_active FROM topics WHERE topic = :topic"),
            {"topic": topic},
        )
        .mappings()
        .first()
    )
    return _topic_from_row(row) if row else None


def find_topic(db: Session, topic: str, broker_id: str) -> TopicRecord | None:
    row = (
        db.execute(
            text(
                """
                SELECT id, topic, broker_id, is_active
                FROM topics
                WHERE topic = :topic AND broker_id = :broker_id
                """
            ),
            {"topic": topic, "broker_id": broker_id},
        )
        .mappings()
        .first()
    )
    return _topic_from_row(row) if row else None


def list_active_topics(db: Session, broker_id: str | None = None) -> List[TopicRecord]:
    sql = "SELECT id, topic, broker_id, is_active FROM topics WHERE is_active = :active"
    params: dict = {"active": True}
    if broker_id is not None:
        sql += " AND broker_id = :broker_id"
        params["broker_id"] = broker_id
    sql += " ORDER BY created_at, id"

    rows = db.execute(text(sql), params).mappings().all()
    return [_topic_from_row(r) for r in rows]


def list_active_topics_with_broker(db: Session) -> List[ActiveTopicView]:
    rows = (
        db.execute(
            text(
                """
                SELECT t.id, t.topic, t.broker_id, b.host, b.port
                FROM topics t
                JOIN brokers b ON b.id = t.broker_id
                WHERE t.is_active = :active
                ORDER BY t.created_at, t.id
                """
            ),
            {"active": True},
        )
        .mappings()
        .all()
    )
    return [
        ActiveTopicView(
            id=r["id"],
            topic=r["topic"],
            broker_id=r["broker_id"],
            broker_host=r["host"],
            broker_port=int(r["port"]),
        )
        for r in rows
    ]


def count_active_topics(db: Session) -> int:
    return int(
        db.execute(
            text("SELECT COUNT(*) FROM topics WHERE is_active = :active"),
            {"active": True},
        ).scalar_one()
    )
