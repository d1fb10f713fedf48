"""Alta y baja de tópicos."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import require_api_key
from ..dependencies import get_db, get_registry
from ..errors import ConflictError, NotFoundError
from ..mqtt.registry import BrokerRegistry
from ..schemas import MessageOut, TopicCreated, TopicCreateIn
from ..services import topics as service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/topics", tags=["topics"], dependencies=[Depends(require_api_key)])


@router.post("", response_model=TopicCreated, status_code=201)
def create_topic(
    payload: TopicCreateIn,
    db: Session = Depends(get_db),
    registry: BrokerRegistry = Depends(get_registry),
) -> TopicCreated:
    try:
        topic_id = service.create_topic(db, registry, payload)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[API] Error creating topic %s", payload.topic)
        raise HTTPException(status_code=500, detail="Internal server error")
    return TopicCreated(topic_id=topic_id)


@router.delete("/{topic_id}", response_model=MessageOut)
def delete_topic(
    topic_id: str,
    db: Session = Depends(get_db),
    registry: BrokerRegistry = Depends(get_registry),
) -> MessageOut:
    try:
        service.delete_topic(db, registry, topic_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[API] Error deleting topic %s", topic_id)
        raise HTTPException(status_code=500, detail="Internal server error")
    return MessageOut(message="Topic deleted")
