"""Autenticación por API Key para la API de gestión.

SECURITY: En producción, MONITOR_API_KEY debe estar configurado.
"""

from __future__ import annotations

import logging

from fastapi import Header, HTTPException

from common.config import get_settings

logger = logging.getLogger(__name__)


def require_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key")
) -> None:
    """Valida el header X-API-Key.

    En modo desarrollo (sin MONITOR_API_KEY) permite acceso sin autenticación con warning.
    """
    settings = get_settings()
    expected = settings.api_key

    if not expected:
        if settings.is_production:
            logger.error("CRITICAL: MONITOR_API_KEY not configured in production!")
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API key not set"
            )
        logger.warning(
            "[SECURITY WARNING] MONITOR_API_KEY not set - "
            "allowing unauthenticated access (DEV ONLY)"
        )
        return

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    if x_api_key != expected:
        logger.warning("[API] Invalid API key attempt")
        raise HTTPException(status_code=401, detail="Invalid API key")
