"""Gestor de conexiones MQTT.

Estructura:
- certificates.py: normalización de certificados CA en PEM
- supervisor.py: conexión por broker (TLS / fallback / reconexión)
- subscriptions.py: tracker de suscripciones confirmadas
- forwarder.py: reenvío de mensajes al front end
- registry.py: registro de supervisores
- lifecycle.py: bootstrap y shutdown
"""

from .certificates import normalize_ca_cert
from .config import ConnectionPolicy
from .forwarder import MessageForwarder
from .lifecycle import LifecycleController
from .models import BrokerEndpoint, ConnectionState, InboundMessage
from .registry import BrokerRegistry
from .supervisor import ConnectionSupervisor

__all__ = [
    "normalize_ca_cert",
    "ConnectionPolicy",
    "MessageForwarder",
    "LifecycleController",
    "BrokerEndpoint",
    "ConnectionState",
    "InboundMessage",
    "BrokerRegistry",
    "ConnectionSupervisor",
]
