"""Tipos del gestor de conexiones MQTT."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ConnectionState(str, Enum):
    """Estados de conexión de un supervisor."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class BrokerEndpoint:
    """Parámetros de conexión de un broker registrado.

    Inmutable: cambiar parámetros requiere borrar y volver a registrar el broker.
    """
    id: str
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    ca_cert: Optional[str] = field(default=None, repr=False)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class InboundMessage:
    """Mensaje recibido de un broker, antes de reenviarlo."""
    broker_id: str
    topic: str
    payload: bytes
