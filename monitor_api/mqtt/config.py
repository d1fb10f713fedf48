"""Configuración de la política de conexión MQTT.

Valores por defecto: 10 intentos de reconexión, intervalo de 10s, fallback a texto plano tras 2s.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConnectionPolicy:
    """Tunables de conexión, reconexión y suscripción."""
    secure_port: int = 8883
    plaintext_port: int = 1883
    keepalive_seconds: int = 60
    connect_timeout_seconds: float = 10.0

    max_reconnect_attempts: int = 10
    reconnect_interval_seconds: float = 10.0
    reconnect_delay_seconds: float = 10.0
    plaintext_fallback_delay_seconds: float = 2.0

    ack_timeout_seconds: float = 10.0
    topic_retry_delay_seconds: float = 5.0
    bootstrap_retry_delay_seconds: float = 5.0

    client_id_prefix: str = "iot-monitor"
    forward_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "ConnectionPolicy":
        return cls(
            secure_port=int(os.getenv("MQTT_SECURE_PORT", "8883")),
            plaintext_port=int(os.getenv("MQTT_PLAINTEXT_PORT", "1883")),
            keepalive_seconds=int(os.getenv("MQTT_KEEPALIVE", "60")),
            connect_timeout_seconds=float(os.getenv("MQTT_CONNECT_TIMEOUT", "10")),
            max_reconnect_attempts=int(os.getenv("MQTT_MAX_RECONNECT_ATTEMPTS", "10")),
            reconnect_interval_seconds=float(os.getenv("MQTT_RECONNECT_INTERVAL", "10")),
            reconnect_delay_seconds=float(os.getenv("MQTT_RECONNECT_DELAY", "10")),
            plaintext_fallback_delay_seconds=float(os.getenv("MQTT_PLAINTEXT_FALLBACK_DELAY", "2")),
            ack_timeout_seconds=float(os.getenv("MQTT_ACK_TIMEOUT", "10")),
            topic_retry_delay_seconds=float(os.getenv("MQTT_TOPIC_RETRY_DELAY", "5")),
            bootstrap_retry_delay_seconds=float(os.getenv("MQTT_BOOTSTRAP_RETRY_DELAY", "5")),
            client_id_prefix=os.getenv("MQTT_CLIENT_ID_PREFIX", "iot-monitor"),
            forward_timeout_seconds=float(os.getenv("FORWARD_TIMEOUT", "5")),
        )
