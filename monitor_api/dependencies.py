"""Dependencias FastAPI: sesión de BD y registro de brokers desde app.state."""

from __future__ import annotations

from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from .mqtt.registry import BrokerRegistry


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_registry(request: Request) -> BrokerRegistry:
    return request.app.state.registry
