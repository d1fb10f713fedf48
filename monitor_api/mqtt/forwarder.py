"""Reenvío de mensajes MQTT al front end.

Cada mensaje recibido se busca en la tabla de tópicos y, si está registrado,
se envía como JSON a `{FRONT_END_URL}/messages`. Los errores del sink se
loguean y nunca se propagan hacia el supervisor.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import orjson
import requests
from paho.mqtt.client import topic_matches_sub

from .. import metrics
from .models import InboundMessage

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/messages"


def decode_payload(payload: bytes) -> Any:
    """Decodifica el payload como JSON; si no lo es, lo envuelve en {"data": texto}."""
    text = payload.decode("utf-8", errors="replace")
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError:
        return {"data": text}


def build_envelope(topic: str, payload: bytes) -> Dict[str, Any]:
    return {"topic": topic, "payload": decode_payload(payload)}


class MessageForwarder:
    """Publica en el sink HTTP los mensajes de tópicos registrados."""

    def __init__(self, store: Any, sink_url: Optional[str], timeout: float = 5.0):
        self._store = store
        self._sink_url = sink_url.rstrip("/") if sink_url else None
        self._timeout = timeout

    @property
    def endpoint(self) -> Optional[str]:
        if not self._sink_url:
            return None
        return f"{self._sink_url}{MESSAGES_PATH}"

    def forward(self, message: InboundMessage) -> bool:
        """Reenvía un mensaje. Devuelve True si el sink respondió 2xx."""
        try:
            topic_id = self._lookup_topic_id(message.broker_id, message.topic)
        except Exception as e:
            logger.error("[FORWARD] Error looking up topic %s: %s", message.topic, e)
            metrics.MESSAGES_FORWARDED.labels(status="dropped").inc()
            return False

        if topic_id is None:
            logger.warning(
                "[FORWARD] Topic %s not found for broker %s, dropping message",
                message.topic,
                message.broker_id,
            )
            metrics.MESSAGES_FORWARDED.labels(status="dropped").inc()
            return False

        return self._post(build_envelope(message.topic, message.payload), message.topic)

    def _lookup_topic_id(self, broker_id: str, topic: str) -> Optional[str]:
        record = self._store.find_topic(topic, broker_id)
        if record is not None:
            return record.id

        # Mensajes recibidos por una suscripción con comodines (+, #)
        for candidate in self._store.active_topic_records(broker_id):
            if ("+" in candidate.topic or "#" in candidate.topic) and topic_matches_sub(candidate.topic, topic):
                return candidate.id
        return None

    def _post(self, envelope: Dict[str, Any], topic: str) -> bool:
        url = self.endpoint
        if url is None:
            logger.error("[FORWARD] FRONT_END_URL not configured - dropping message from %s", topic)
            metrics.MESSAGES_FORWARDED.labels(status="not_configured").inc()
            return False

        try:
            response = requests.post(
                url,
                data=orjson.dumps(envelope),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error("[FORWARD] Error forwarding message from %s: %s", topic, e)
            metrics.MESSAGES_FORWARDED.labels(status="transport_error").inc()
            return False

        if not response.ok:
            logger.error(
                "[FORWARD] Failed to forward message from %s: %s %s",
                topic,
                response.status_code,
                response.text[:500],
            )
            metrics.MESSAGES_FORWARDED.labels(status="http_error").inc()
            return False

        logger.debug("[FORWARD] Message from %s forwarded", topic)
        metrics.MESSAGES_FORWARDED.labels(status="success").inc()
        return True
