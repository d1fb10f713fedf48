"""Esquema de la BD del monitor.

Idempotente: se ejecuta en cada arranque.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

_DDL = (
    """
    CREATE TABLE IF NOT EXISTS brokers (
        id VARCHAR(36) PRIMARY KEY,
        host VARCHAR(255) NOT NULL,
        port INTEGER NOT NULL,
        username VARCHAR(255),
        password VARCHAR(255),
        ca_cert TEXT,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS topics (
        id VARCHAR(36) PRIMARY KEY,
        topic VARCHAR(1024) NOT NULL UNIQUE,
        broker_id VARCHAR(36) NOT NULL REFERENCES brokers(id),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_topics_broker_id ON topics (broker_id)",
)


def ensure_schema(engine: Engine) -> None:
    with engine.begin() as conn:
        for statement in _DDL:
            conn.execute(text(statement))
    logger.info("[DB] Esquema verificado (brokers, topics)")
