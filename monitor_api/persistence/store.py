"""Acceso a BD para el núcleo MQTT.

Los hilos del núcleo (workers, timers) no tienen una sesión de request:
cada llamada abre su propia sesión y la cierra al terminar.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import repository as repo
from .records import BrokerRecord, TopicRecord


class MonitorStore:
    """Consultas de solo lectura usadas por supervisores, forwarder y lifecycle."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def active_topics(self, broker_id: str) -> List[str]:
        with self.session() as db:
            return [t.topic for t in repo.list_active_topics(db, broker_id)]

    def active_topic_records(self, broker_id: str) -> List[TopicRecord]:
        with self.session() as db:
            return repo.list_active_topics(db, broker_id)

    def find_topic(self, topic: str, broker_id: str) -> Optional[TopicRecord]:
        with self.session() as db:
            return repo.find_topic(db, topic, broker_id)

    def list_brokers_with_active_topics(self) -> List[BrokerRecord]:
        with self.session() as db:
            return repo.list_brokers_with_active_topics(db)

    def ping(self) -> None:
        with self.session() as db:
            repo.count_brokers(db)
