"""Arranque y apagado de las conexiones MQTT."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from .config import ConnectionPolicy
from .registry import BrokerRegistry
from .scheduler import ThreadScheduler

logger = logging.getLogger(__name__)


class LifecycleController:
    """Bootstrap desde la BD al iniciar y shutdown ordenado al terminar."""

    def __init__(
        self,
        registry: BrokerRegistry,
        store: Any,
        policy: Optional[ConnectionPolicy] = None,
        scheduler: Optional[Any] = None,
    ):
        self.registry = registry
        self._store = store
        self._policy = policy or registry.policy
        self._scheduler = scheduler or ThreadScheduler()

        self._lock = threading.Lock()
        self._retry_task = None
        self._stopped = False
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def bootstrap(self) -> bool:
        """Registra todos los brokers de la BD.

        Si la BD no responde, reintenta tras `bootstrap_retry_delay_seconds`
        en vez de abortar el arranque.
        """
        with self._lock:
            if self._stopped:
                return False
            self._retry_task = None

        logger.info("[STARTUP] Initializing MQTT connections...")
        try:
            brokers = self._store.list_brokers_with_active_topics()
        except Exception as e:
            logger.error(
                "[STARTUP] Error initializing MQTT connections: %s. Retrying in %.0fs",
                e,
                self._policy.bootstrap_retry_delay_seconds,
            )
            with self._lock:
                if not self._stopped:
                    self._retry_task = self._scheduler.call_later(
                        self._policy.bootstrap_retry_delay_seconds,
                        self.bootstrap,
                        name="bootstrap",
                    )
            return False

        logger.info("[STARTUP] Found %d brokers to initialize", len(brokers))
        for broker in brokers:
            logger.info(
                "[STARTUP] Broker %s (%s:%d) with %d active topics",
                broker.id,
                broker.host,
                broker.port,
                len(broker.topics),
            )
            self.registry.register(broker.to_endpoint())

        self._initialized = True
        self.log_system_status()
        return True

    def log_system_status(self) -> None:
        """Resumen del estado del sistema en el log."""
        statuses = self.registry.get_status()
        connected = sum(1 for s in statuses if s["is_connected"])
        subscriptions = sum(len(s["subscribed_topics"]) for s in statuses)
        logger.info(
            "[STARTUP] System status: brokers=%d connected=%d subscriptions=%d",
            len(statuses),
            connected,
            subscriptions,
        )
        for s in statuses:
            logger.info(
                "[STARTUP]   %s:%d state=%s topics=%d fallback=%s",
                s["host"],
                s["port"],
                s["state"],
                len(s["subscribed_topics"]),
                s["using_plaintext_fallback"],
            )

    @property
    def retry_pending(self) -> bool:
        with self._lock:
            return self._retry_task is not None and self._retry_task.active

    def shutdown(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            if self._retry_task is not None:
                self._retry_task.cancel()
                self._retry_task = None

        logger.info("[SHUTDOWN] Shutting down gracefully...")
        self.registry.shutdown()
