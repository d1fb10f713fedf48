"""Endpoints HTTP de la API de gestión."""

from .brokers import router as brokers_router
from .health import router as health_router
from .status import router as status_router
from .topics import router as topics_router

__all__ = [
    "brokers_router",
    "health_router",
    "status_router",
    "topics_router",
]
