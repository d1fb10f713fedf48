"""Status del sistema (BD + conexiones MQTT)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import require_api_key
from ..dependencies import get_db, get_registry
from ..mqtt.registry import BrokerRegistry
from ..schemas import SystemStatus
from ..services.status import get_system_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/status", tags=["status"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=SystemStatus)
def system_status(
    db: Session = Depends(get_db),
    registry: BrokerRegistry = Depends(get_registry),
) -> SystemStatus:
    try:
        return get_system_status(db, registry)
    except SQLAlchemyError:
        logger.exception("[API] Error getting system status")
        raise HTTPException(status_code=500, detail="Failed to get system status")


@router.post("/refresh", response_model=SystemStatus)
def refresh_subscriptions(
    db: Session = Depends(get_db),
    registry: BrokerRegistry = Depends(get_registry),
) -> SystemStatus:
    """Re-suscribe los tópicos activos de cada broker conectado y devuelve el status."""
    subscribed = registry.refresh_subscriptions()
    logger.info("[API] Subscriptions refreshed (%d topics subscribed)", subscribed)
    try:
        return get_system_status(db, registry)
    except SQLAlchemyError:
        logger.exception("[API] Error getting system status")
        raise HTTPException(status_code=500, detail="Failed to get system status")
