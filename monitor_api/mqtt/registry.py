"""Registro de supervisores (uno por broker).

El lock del registro solo protege el diccionario. connect/close de los
supervisores, consultas a BD y el sink siempre se llaman fuera del lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .. import metrics
from .config import ConnectionPolicy
from .forwarder import MessageForwarder
from .models import BrokerEndpoint
from .scheduler import ThreadScheduler
from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)


class BrokerRegistry:
    """Mapa broker_id → ConnectionSupervisor."""

    def __init__(
        self,
        store: Any,
        forwarder: MessageForwarder,
        policy: Optional[ConnectionPolicy] = None,
        *,
        client_factory: Optional[Callable[[str], Any]] = None,
        tls_context_factory: Optional[Callable[[str], Any]] = None,
        scheduler: Optional[Any] = None,
    ):
        self._store = store
        self._forwarder = forwarder
        self.policy = policy or ConnectionPolicy()
        self._client_factory = client_factory
        self._tls_context_factory = tls_context_factory
        self._scheduler = scheduler or ThreadScheduler()

        self._lock = threading.Lock()
        self._supervisors: Dict[str, ConnectionSupervisor] = {}

    def __contains__(self, broker_id: str) -> bool:
        with self._lock:
            return broker_id in self._supervisors

    def __len__(self) -> int:
        with self._lock:
            return len(self._supervisors)

    def get(self, broker_id: str) -> Optional[ConnectionSupervisor]:
        with self._lock:
            return self._supervisors.get(broker_id)

    def broker_ids(self) -> List[str]:
        with self._lock:
            return list(self._supervisors)

    def register(self, endpoint: BrokerEndpoint) -> bool:
        """Crea el supervisor del broker y lanza la conexión.

        Los errores de conexión se loguean y no se propagan.

        Returns:
            False si el broker ya estaba registrado
        """
        with self._lock:
            if endpoint.id in self._supervisors:
                logger.info("[REGISTRY] Broker %s already registered", endpoint.id)
                return False
            supervisor = self._create_supervisor(endpoint)
            self._supervisors[endpoint.id] = supervisor
            metrics.REGISTERED_BROKERS.set(len(self._supervisors))

        logger.info("[REGISTRY] Registered broker %s (%s)", endpoint.id, endpoint.address)
        try:
            supervisor.connect()
        except Exception:
            logger.exception("[REGISTRY] Error connecting to broker %s", endpoint.address)
        return True

    def deregister(self, broker_id: str) -> bool:
        """Cierra y elimina el supervisor. No-op para ids desconocidos."""
        with self._lock:
            supervisor = self._supervisors.pop(broker_id, None)
            metrics.REGISTERED_BROKERS.set(len(self._supervisors))

        if supervisor is None:
            logger.debug("[REGISTRY] Broker %s not registered, nothing to remove", broker_id)
            return False

        supervisor.close()
        logger.info("[REGISTRY] Deregistered broker %s", broker_id)
        return True

    def subscribe(self, broker_id: str, topic: str) -> bool:
        supervisor = self.get(broker_id)
        if supervisor is None or supervisor.subscriptions is None:
            logger.error("[SUBS] Broker %s not registered, cannot subscribe to %s", broker_id, topic)
            return False
        return supervisor.subscriptions.subscribe(topic)

    def unsubscribe(self, broker_id: str, topic: str) -> bool:
        supervisor = self.get(broker_id)
        if supervisor is None or supervisor.subscriptions is None:
            logger.error("[SUBS] Broker %s not registered, cannot unsubscribe from %s", broker_id, topic)
            return False
        return supervisor.subscriptions.unsubscribe(topic)

    def refresh_subscriptions(self) -> int:
        """Reconcilia las suscripciones de todos los brokers conectados con la BD."""
        total = 0
        for supervisor in self._snapshot():
            if supervisor.is_connected and supervisor.subscriptions is not None:
                total += supervisor.subscriptions.reconcile_active_topics()
        return total

    def get_status(self) -> List[dict]:
        """Foto de solo lectura de cada supervisor."""
        return [supervisor.snapshot() for supervisor in self._snapshot()]

    def shutdown(self) -> None:
        """Cierra todos los supervisores (offline + close + timers)."""
        with self._lock:
            supervisors = list(self._supervisors.values())
            self._supervisors.clear()
            metrics.REGISTERED_BROKERS.set(0)

        logger.info("[REGISTRY] Shutting down %d MQTT connections...", len(supervisors))
        for supervisor in supervisors:
            try:
                supervisor.close()
            except Exception:
                logger.exception("[REGISTRY] Error closing broker %s", supervisor.broker_id)
        logger.info("[REGISTRY] All MQTT connections closed")

    def _snapshot(self) -> List[ConnectionSupervisor]:
        with self._lock:
            return list(self._supervisors.values())

    def _create_supervisor(self, endpoint: BrokerEndpoint) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            endpoint,
            self.policy,
            topic_source=self._store,
            on_message=self._forwarder.forward,
            client_factory=self._client_factory,
            tls_context_factory=self._tls_context_factory,
            scheduler=self._scheduler,
        )
