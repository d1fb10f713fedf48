"""Métricas Prometheus del monitor.

Agregadas por tipo de evento: no incluyen ids de broker ni tópicos.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

MQTT_CONNECTION_EVENTS = Counter(
    "monitor_mqtt_connection_events_total",
    "Connection events handled by broker supervisors",
    ["event"],  # connected, connect_failed, auth_failed, disconnected, plaintext_fallback
)
MQTT_RECONNECT_ATTEMPTS = Counter(
    "monitor_mqtt_reconnect_attempts_total",
    "Automatic reconnection attempts",
)
MQTT_RECONNECT_EXHAUSTED = Counter(
    "monitor_mqtt_reconnect_exhausted_total",
    "Supervisors that reached the maximum reconnection attempts",
)
MQTT_SUBSCRIPTION_OPS = Counter(
    "monitor_mqtt_subscription_ops_total",
    "Wire subscribe/unsubscribe outcomes",
    ["op", "status"],  # op: subscribe|unsubscribe, status: success|failed|not_connected
)
MESSAGES_FORWARDED = Counter(
    "monitor_messages_forwarded_total",
    "Inbound messages handled by the forwarder",
    ["status"],  # success, dropped, http_error, transport_error, not_configured
)
REGISTERED_BROKERS = Gauge(
    "monitor_registered_brokers",
    "Brokers currently held by the registry",
)
