"""Tracker de suscripciones por broker.

Mantiene el conjunto de tópicos efectivamente suscritos en el cable. Un
tópico entra al conjunto solo cuando el broker confirma el SUBSCRIBE y sale
solo cuando confirma el UNSUBSCRIBE.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, List, Optional, Protocol, Set

from .. import metrics
from .config import ConnectionPolicy

logger = logging.getLogger(__name__)


class TopicSource(Protocol):
    def active_topics(self, broker_id: str) -> List[str]:
        ...


class SubscriptionTracker:
    """Suscripciones de un supervisor.

    `_op_lock` serializa las operaciones de cable: dos subscribe concurrentes
    al mismo tópico producen una sola suscripción en el broker.
    """

    def __init__(self, supervisor: Any, topic_source: TopicSource, policy: ConnectionPolicy, scheduler: Any):
        self._supervisor = supervisor
        self._source = topic_source
        self._policy = policy
        self._scheduler = scheduler

        self._topics: Set[str] = set()
        self._lock = threading.Lock()
        self._op_lock = threading.Lock()
        self._retry_task = None
        self._closed = False

    def topics(self) -> List[str]:
        with self._lock:
            return sorted(self._topics)

    def __contains__(self, topic: str) -> bool:
        with self._lock:
            return topic in self._topics

    def __len__(self) -> int:
        with self._lock:
            return len(self._topics)

    def subscribe(self, topic: str) -> bool:
        """Suscribe un tópico (QoS 1).

        Returns:
            True si el tópico queda suscrito (ya lo estaba o el broker lo confirmó)
        """
        broker_id = self._supervisor.broker_id
        with self._op_lock:
            with self._lock:
                if topic in self._topics:
                    logger.debug("[SUBS] Already subscribed to %s on broker %s", topic, broker_id)
                    return True

            if not self._supervisor.is_connected:
                logger.error("[SUBS] Broker %s not connected, cannot subscribe to %s", broker_id, topic)
                metrics.MQTT_SUBSCRIPTION_OPS.labels(op="subscribe", status="not_connected").inc()
                return False

            if not self._supervisor.wire_subscribe(topic, self._policy.ack_timeout_seconds):
                logger.error("[SUBS] Error subscribing to %s on broker %s", topic, broker_id)
                metrics.MQTT_SUBSCRIPTION_OPS.labels(op="subscribe", status="failed").inc()
                return False

            with self._lock:
                self._topics.add(topic)
            metrics.MQTT_SUBSCRIPTION_OPS.labels(op="subscribe", status="success").inc()
            logger.info("[SUBS] Subscribed to %s on broker %s", topic, broker_id)
            return True

    def unsubscribe(self, topic: str) -> bool:
        """Desuscribe un tópico. True si ya no estaba o el broker lo confirmó."""
        broker_id = self._supervisor.broker_id
        with self._op_lock:
            with self._lock:
                if topic not in self._topics:
                    return True

            if not self._supervisor.is_connected:
                logger.error("[SUBS] Broker %s not connected, cannot unsubscribe from %s", broker_id, topic)
                metrics.MQTT_SUBSCRIPTION_OPS.labels(op="unsubscribe", status="not_connected").inc()
                return False

            if not self._supervisor.wire_unsubscribe(topic, self._policy.ack_timeout_seconds):
                logger.error("[SUBS] Error unsubscribing from %s on broker %s", topic, broker_id)
                metrics.MQTT_SUBSCRIPTION_OPS.labels(op="unsubscribe", status="failed").inc()
                return False

            with self._lock:
                self._topics.discard(topic)
            metrics.MQTT_SUBSCRIPTION_OPS.labels(op="unsubscribe", status="success").inc()
            logger.info("[SUBS] Unsubscribed from %s on broker %s", topic, broker_id)
            return True

    def reconcile_active_topics(self) -> int:
        """Re-suscribe todos los tópicos activos del broker según la BD.

        Si la consulta falla se reintenta tras `topic_retry_delay_seconds`.

        Returns:
            Cantidad de tópicos suscritos
        """
        if self._closed:
            return 0
        broker_id = self._supervisor.broker_id
        try:
            topics = self._source.active_topics(broker_id)
        except Exception as e:
            logger.error(
                "[SUBS] Error loading active topics for broker %s: %s. Retrying in %.0fs",
                broker_id,
                e,
                self._policy.topic_retry_delay_seconds,
            )
            self._schedule_retry()
            return 0

        logger.info("[SUBS] Found %d active topics for broker %s", len(topics), broker_id)
        with self._lock:
            self._topics.clear()

        subscribed = 0
        for topic in topics:
            if self.subscribe(topic):
                subscribed += 1

        logger.info("[SUBS] Subscribed to %d/%d topics for broker %s", subscribed, len(topics), broker_id)
        return subscribed

    def _schedule_retry(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._retry_task is not None:
                self._retry_task.cancel()
            self._retry_task = self._scheduler.call_later(
                self._policy.topic_retry_delay_seconds,
                self.reconcile_active_topics,
                name=f"topics-{self._supervisor.broker_id[:8]}",
            )

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._retry_task is not None:
                self._retry_task.cancel()
                self._retry_task = None

    @property
    def retry_pending(self) -> bool:
        with self._lock:
            return self._retry_task is not None and self._retry_task.active
