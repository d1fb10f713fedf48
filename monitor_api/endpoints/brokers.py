"""Alta y baja de brokers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import require_api_key
from ..dependencies import get_db, get_registry
from ..errors import NotFoundError
from ..mqtt.registry import BrokerRegistry
from ..schemas import BrokerCreated, BrokerCreateIn, MessageOut
from ..services import brokers as service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/brokers", tags=["brokers"], dependencies=[Depends(require_api_key)])


@router.post("", response_model=BrokerCreated, status_code=201)
def create_broker(
    payload: BrokerCreateIn,
    db: Session = Depends(get_db),
    registry: BrokerRegistry = Depends(get_registry),
) -> BrokerCreated:
    try:
        broker_id = service.create_broker(db, registry, payload)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[API] Error creating broker %s:%d", payload.host, payload.port)
        raise HTTPException(status_code=500, detail="Internal server error")
    return BrokerCreated(broker_id=broker_id)


@router.delete("/{broker_id}", response_model=MessageOut)
def delete_broker(
    broker_id: str,
    db: Session = Depends(get_db),
    registry: BrokerRegistry = Depends(get_registry),
) -> MessageOut:
    try:
        service.delete_broker(db, registry, broker_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[API] Error deleting broker %s", broker_id)
        raise HTTPException(status_code=500, detail="Internal server error")
    return MessageOut(message="Broker deleted")
