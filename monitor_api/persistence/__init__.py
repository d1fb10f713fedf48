"""Persistencia de brokers y tópicos (SQLAlchemy + SQL plano)."""

from .records import ActiveTopicView, BrokerRecord, TopicRecord
from .schema import ensure_schema
from .store import MonitorStore

__all__ = [
    "ActiveTopicView",
    "BrokerRecord",
    "TopicRecord",
    "ensure_schema",
    "MonitorStore",
]
