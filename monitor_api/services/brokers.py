from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..mqtt.models import BrokerEndpoint
from ..mqtt.registry import BrokerRegistry
from ..persistence import repository as repo
from ..schemas import BrokerCreateIn

logger = logging.getLogger(__name__)


def create_broker(db: Session, registry: BrokerRegistry, payload: BrokerCreateIn) -> str:
    """Persiste el broker y lo registra en el gestor MQTT.

    Un broker inalcanzable no hace fallar la operación: el supervisor queda
    desconectado y su política de reconexión se encarga.
    """
    broker_id = repo.insert_broker(
        db,
        host=payload.host,
        port=payload.port,
        username=payload.username,
        password=payload.password,
        ca_cert=payload.ca_cert,
    )
    db.commit()
    logger.info("[API] Broker %s created (%s:%d)", broker_id, payload.host, payload.port)

    endpoint = BrokerEndpoint(
        id=broker_id,
        host=payload.host,
        port=payload.port,
        username=payload.username,
        password=payload.password,
        ca_cert=payload.ca_cert,
    )
    try:
        registry.register(endpoint)
    except Exception:
        logger.exception("[API] Error connecting to broker %s", broker_id)

    return broker_id


def delete_broker(db: Session, registry: BrokerRegistry, broker_id: str) -> None:
    """Desconecta el broker y lo elimina junto con sus tópicos."""
    broker = repo.get_broker(db, broker_id)
    if broker is None:
        raise NotFoundError("Broker not found")

    registry.deregister(broker_id)

    repo.delete_broker(db, broker_id)
    db.commit()
    logger.info("[API] Broker %s deleted", broker_id)
