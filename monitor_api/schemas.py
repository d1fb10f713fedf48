from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # JSON en camelCase, atributos en snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BrokerCreateIn(CamelModel):
    host: str = Field(..., min_length=1, max_length=255)
    port: int = Field(..., ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    ca_cert: Optional[str] = None


class BrokerCreated(CamelModel):
    broker_id: str


class TopicCreateIn(CamelModel):
    topic: str = Field(..., min_length=1, max_length=1024)
    broker_id: str = Field(..., min_length=1)
    is_active: bool = True


class TopicCreated(CamelModel):
    topic_id: str


class MessageOut(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class ConnectionStatus(CamelModel):
    broker_id: str
    host: str
    port: int
    state: str
    is_connected: bool
    using_plaintext_fallback: bool
    subscribed_topics: List[str] = Field(default_factory=list)
    reconnect_attempts: int
    client_id: str


class DatabaseStatus(CamelModel):
    brokers: int
    active_topics: int


class MqttStatus(CamelModel):
    connected_brokers: str
    total_subscriptions: int
    connections: List[ConnectionStatus] = Field(default_factory=list)


class BrokerRef(CamelModel):
    id: str
    host: str
    port: int


class ActiveTopicOut(CamelModel):
    id: str
    topic: str
    is_active: bool = True
    broker: BrokerRef


class BrokerTopicsOut(CamelModel):
    id: str
    host: str
    port: int
    topics_count: int
    topics: List[str] = Field(default_factory=list)


class SystemStatus(CamelModel):
    database: DatabaseStatus
    mqtt: MqttStatus
    topics: List[ActiveTopicOut] = Field(default_factory=list)
    brokers: List[BrokerTopicsOut] = Field(default_factory=list)
