from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError
from ..mqtt.registry import BrokerRegistry
from ..persistence import repository as repo
from ..schemas import TopicCreateIn

logger = logging.getLogger(__name__)


def create_topic(db: Session, registry: BrokerRegistry, payload: TopicCreateIn) -> str:
    """Crea el tópico y, si está activo, lo suscribe en su broker.

    Si la suscripción en vivo falla el tópico queda guardado igual: se
    suscribe en la próxima reconciliación (al reconectar o en refresh).
    """
    if repo.get_broker(db, payload.broker_id) is None:
        raise NotFoundError("Broker not found")

    if repo.find_topic_by_value(db, payload.topic) is not None:
        raise ConflictError("Topic already exists")

    try:
        topic_id = repo.insert_topic(db, payload.topic, payload.broker_id, payload.is_active)
        db.commit()
    except IntegrityError:
        # Alta concurrente del mismo tópico
        db.rollback()
        raise ConflictError("Topic already exists")

    logger.info("[API] Topic %s created on broker %s (active=%s)", payload.topic, payload.broker_id, payload.is_active)

    if payload.is_active and not registry.subscribe(payload.broker_id, payload.topic):
        logger.warning(
            "[API] Topic %s saved but not subscribed yet on broker %s",
            payload.topic,
            payload.broker_id,
        )

    return topic_id


def delete_topic(db: Session, registry: BrokerRegistry, topic_id: str) -> None:
    topic = repo.get_topic(db, topic_id)
    if topic is None:
        raise NotFoundError("Topic not found")

    if topic.is_active and not registry.unsubscribe(topic.broker_id, topic.topic):
        logger.warning("[API] Could not unsubscribe %s from broker %s", topic.topic, topic.broker_id)

    repo.delete_topic(db, topic_id)
    db.commit()
    logger.info("[API] Topic %s deleted", topic.topic)
