"""Health, readiness y métricas Prometheus."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: always returns ok if process is running."""
    return {"status": "ok"}


@router.get("/ready")
def ready(request: Request):
    """Readiness probe: checks DB connectivity."""
    try:
        request.app.state.store.ping()
    except Exception:
        logger.exception("[API] Readiness check failed")
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready", "brokers": len(request.app.state.registry)}


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
