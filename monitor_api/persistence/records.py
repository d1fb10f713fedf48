"""Registros leídos de la BD."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ..mqtt.models import BrokerEndpoint


@dataclass(frozen=True)
class TopicRecord:
    id: str
    topic: str
    broker_id: str
    is_active: bool


@dataclass(frozen=True)
class ActiveTopicView:
    """Tópico activo junto con el host/puerto de su broker (para status)."""
    id: str
    topic: str
    broker_id: str
    broker_host: str
    broker_port: int


@dataclass(frozen=True)
class BrokerRecord:
    id: str
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    ca_cert: Optional[str] = field(default=None, repr=False)
    topics: List[TopicRecord] = field(default_factory=list)

    def to_endpoint(self) -> BrokerEndpoint:
        return BrokerEndpoint(
            id=self.id,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            ca_cert=self.ca_cert,
        )
