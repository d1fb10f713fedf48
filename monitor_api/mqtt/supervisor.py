"""Supervisor de conexión por broker.

Una instancia por broker registrado. Es dueño de:
- el cliente paho (a lo sumo uno vivo a la vez)
- la decisión TLS / texto plano, con un único fallback a texto plano
- el timer de reconexión (intervalo fijo, tope de intentos)
- el tracker de suscripciones del broker

Los callbacks de paho llegan desde el hilo de red de cada cliente. Todo
cambio de estado se hace bajo el lock del supervisor y los callbacks de un
cliente que ya no es el actual (o de un supervisor cerrado) se descartan.
El trabajo que puede bloquear (consultas a BD, espera de SUBACK, POST al
sink) corre en el worker del supervisor, nunca en el hilo de red.
"""

from __future__ import annotations

import logging
import secrets
import ssl
import string
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import paho.mqtt.client as mqtt

from .. import metrics
from .certificates import describe_pem, normalize_ca_cert
from .config import ConnectionPolicy
from .models import BrokerEndpoint, ConnectionState, InboundMessage
from .scheduler import ScheduledTask, ThreadScheduler
from .subscriptions import SubscriptionTracker, TopicSource

logger = logging.getLogger(__name__)

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"
STATUS_QOS = 1
SUBSCRIBE_QOS = 1

# CONNACK 3.1.1: 4 = bad user name or password, 5 = not authorized.
# paho 2.x los entrega como reason codes 134 / 135.
AUTH_FAILURE_CODES = frozenset({4, 5, 0x86, 0x87})

_CLIENT_ID_ALPHABET = string.ascii_lowercase + string.digits

MessageHandler = Callable[[InboundMessage], Any]


def generate_client_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(_CLIENT_ID_ALPHABET) for _ in range(13))
    return f"{prefix}-{suffix}"


def is_authorization_failure(reason_code: Any) -> bool:
    """True si el CONNACK indica credenciales rechazadas."""
    value = getattr(reason_code, "value", reason_code)
    if value in AUTH_FAILURE_CODES:
        return True
    return "not authorized" in str(reason_code).lower()


def _connack_failed(reason_code: Any) -> bool:
    if hasattr(reason_code, "is_failure"):
        return bool(reason_code.is_failure)
    return int(reason_code) != 0


def _ack_failed(reason_code: Any) -> bool:
    if hasattr(reason_code, "is_failure"):
        return bool(reason_code.is_failure)
    return int(reason_code) >= 0x80


def default_client_factory(client_id: str) -> mqtt.Client:
    # clean_session=False: el broker conserva las suscripciones QoS 1 entre reconexiones.
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
        clean_session=False,
    )


def default_tls_context_factory(ca_pem: str) -> ssl.SSLContext:
    context = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH, cadata=ca_pem)
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


class _PendingAck:
    __slots__ = ("event", "ok")

    def __init__(self):
        self.event = threading.Event()
        self.ok = False

    def resolve(self, ok: bool) -> None:
        self.ok = ok
        self.event.set()


class ConnectionSupervisor:
    """Máquina de estados de la conexión a un broker.

    disconnected → connecting → connected → disconnected → (reconexión) ...

    Uso:
        supervisor = ConnectionSupervisor(endpoint, policy, topic_source=store,
                                          on_message=forwarder.forward)
        supervisor.connect()
        ...
        supervisor.close()
    """

    def __init__(
        self,
        endpoint: BrokerEndpoint,
        policy: Optional[ConnectionPolicy] = None,
        *,
        topic_source: Optional[TopicSource] = None,
        on_message: Optional[MessageHandler] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
        tls_context_factory: Optional[Callable[[str], ssl.SSLContext]] = None,
        scheduler: Optional[Any] = None,
    ):
        self.endpoint = endpoint
        self.policy = policy or ConnectionPolicy()
        self.client_id = generate_client_id(self.policy.client_id_prefix)

        self._on_message = on_message
        self._client_factory = client_factory or default_client_factory
        self._tls_context_factory = tls_context_factory or default_tls_context_factory
        self._scheduler = scheduler or ThreadScheduler()

        self._lock = threading.RLock()
        self._client: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._secure_attempt = False
        self._using_plaintext_fallback = False
        self._reconnect_attempts = 0
        self._reconnect_task: Optional[ScheduledTask] = None
        self._pending_connect: Optional[ScheduledTask] = None
        self._connect_generation = 0
        self._attempt_started = 0.0
        self._exhausted = False
        self._closed = False

        # Acks de SUBSCRIBE/UNSUBSCRIBE, indexados por (cliente, mid)
        self._ack_lock = threading.Lock()
        self._pending_acks: Dict[Tuple[Any, int], _PendingAck] = {}
        self._early_acks: Dict[Tuple[Any, int], bool] = {}
        self._timed_out_acks: Set[Tuple[Any, int]] = set()

        self._worker = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"broker-{endpoint.id[:8]}",
        )

        self.subscriptions: Optional[SubscriptionTracker] = None
        if topic_source is not None:
            self.subscriptions = SubscriptionTracker(self, topic_source, self.policy, self._scheduler)

    # ------------------------------------------------------------------
    # Propiedades
    # ------------------------------------------------------------------

    @property
    def broker_id(self) -> str:
        return self.endpoint.id

    @property
    def status_topic(self) -> str:
        return f"{self.client_id}/status"

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def using_plaintext_fallback(self) -> bool:
        return self._using_plaintext_fallback

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_timer_active(self) -> bool:
        with self._lock:
            return self._reconnect_task is not None and self._reconnect_task.active

    @property
    def has_client(self) -> bool:
        with self._lock:
            return self._client is not None

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Conexión
    # ------------------------------------------------------------------

    def connect(self, force_plaintext: bool = False) -> bool:
        """Inicia un intento de conexión (no bloquea).

        No-op si ya está conectando/conectado o si el supervisor fue cerrado.

        Returns:
            True si se lanzó un intento nuevo
        """
        return self._connect(force_plaintext)

    def _connect(self, force_plaintext: bool, generation: Optional[int] = None) -> bool:
        to_dispose: List[Any] = []
        try:
            with self._lock:
                if self._closed:
                    logger.debug("[MQTT] Supervisor for broker %s is closed, ignoring connect", self.broker_id)
                    return False
                if generation is not None and (generation != self._connect_generation or self._exhausted):
                    # Connect programado que fue reemplazado o cancelado
                    logger.debug("[RECONNECT] Dropping stale scheduled connect for broker %s", self.broker_id)
                    return False
                if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                    return False

                force_plaintext = force_plaintext or self._using_plaintext_fallback
                secure = self._should_use_tls(force_plaintext)
                port = self.policy.plaintext_port if force_plaintext else self.endpoint.port

                stale = self._detach_client()
                if stale is not None:
                    to_dispose.append(stale)

                self._state = ConnectionState.CONNECTING
                self._secure_attempt = secure
                self._attempt_started = time.monotonic()

                try:
                    client = self._build_client(secure)
                    self._client = client
                    logger.info(
                        "[MQTT] Connecting to broker %s:%d (%s%s) with clientId=%s",
                        self.endpoint.host,
                        port,
                        "mqtts" if secure else "mqtt",
                        " fallback" if force_plaintext and self._using_plaintext_fallback else "",
                        self.client_id,
                    )
                    client.connect_async(self.endpoint.host, port, keepalive=self.policy.keepalive_seconds)
                    client.loop_start()
                    return True
                except Exception as e:
                    # Certificado inválido, host inválido, etc.: error de conectividad
                    logger.error(
                        "[MQTT] Connect setup failed for broker %s:%d: %s",
                        self.endpoint.host,
                        port,
                        e,
                    )
                    metrics.MQTT_CONNECTION_EVENTS.labels(event="connect_failed").inc()
                    failed = self._fail_attempt_locked(auth_failure=False)
                    if failed is not None:
                        to_dispose.append(failed)
                    return False
        finally:
            for client in to_dispose:
                self._dispose(client)

    def close(self) -> None:
        """Libera la conexión: publica offline, cierra el cliente y cancela timers.

        Callbacks o intentos de conexión posteriores se descartan.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_reconnect()
            self._cancel_pending_connect()
            if self._state == ConnectionState.CONNECTED:
                self._publish_status(STATUS_OFFLINE)
            stale = self._detach_client()
            self._state = ConnectionState.DISCONNECTED

        if self.subscriptions is not None:
            self.subscriptions.close()
        self._dispose(stale)
        self._worker.shutdown(wait=False, cancel_futures=True)
        logger.info("[MQTT] Disconnected from broker %s (%s)", self.broker_id, self.endpoint.address)

    def _should_use_tls(self, force_plaintext: bool) -> bool:
        return (
            self.endpoint.port == self.policy.secure_port
            and bool(self.endpoint.ca_cert)
            and not force_plaintext
        )

    def _build_client(self, secure: bool) -> Any:
        client = self._client_factory(self.client_id)

        client.on_connect = self._handle_connect
        client.on_connect_fail = self._handle_connect_fail
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message
        client.on_subscribe = self._handle_subscribe_ack
        client.on_unsubscribe = self._handle_unsubscribe_ack

        if self.endpoint.username:
            client.username_pw_set(self.endpoint.username, self.endpoint.password)

        client.will_set(self.status_topic, STATUS_OFFLINE, qos=STATUS_QOS, retain=True)
        client.connect_timeout = self.policy.connect_timeout_seconds

        if secure:
            ca_pem = normalize_ca_cert(self.endpoint.ca_cert or "")
            logger.info("[TLS] Using TLS connection for broker %s", self.endpoint.address)
            logger.debug("[TLS] Certificate format check broker=%s %s", self.broker_id, describe_pem(ca_pem))
            client.tls_set_context(self._tls_context_factory(ca_pem))

        return client

    def _is_current(self, client: Any) -> bool:
        return not self._closed and client is not None and client is self._client

    def _detach_client(self) -> Optional[Any]:
        """Suelta el cliente actual (bajo lock). Se libera luego con _dispose."""
        client = self._client
        self._client = None
        if client is not None:
            self._fail_pending_acks(client)
        return client

    def _dispose(self, client: Optional[Any]) -> None:
        """Cierra un cliente ya desacoplado. Nunca bajo el lock del supervisor."""
        if client is None:
            return
        try:
            client.disconnect()
        except Exception as e:
            logger.warning("[MQTT] Error disconnecting client for broker %s: %s", self.broker_id, e)
        try:
            # Detiene el hilo de red: paho no debe reconectar por su cuenta
            client.loop_stop()
        except Exception as e:
            logger.warning("[MQTT] Error stopping network loop for broker %s: %s", self.broker_id, e)

    def _fail_attempt_locked(self, auth_failure: bool) -> Optional[Any]:
        """Transición a disconnected tras error/cierre. Devuelve el cliente a liberar."""
        stale = self._detach_client()
        self._state = ConnectionState.DISCONNECTED

        if self._secure_attempt and auth_failure and not self._using_plaintext_fallback:
            self._using_plaintext_fallback = True
            metrics.MQTT_CONNECTION_EVENTS.labels(event="plaintext_fallback").inc()
            logger.warning(
                "[TLS] TLS authorization failed for broker %s, trying plaintext in %.1fs",
                self.endpoint.address,
                self.policy.plaintext_fallback_delay_seconds,
            )
            self._schedule_connect(self.policy.plaintext_fallback_delay_seconds, force_plaintext=True)
        else:
            self._start_reconnect()

        return stale

    def _publish_status(self, status: str) -> None:
        if self._client is None:
            return
        try:
            self._client.publish(self.status_topic, status, qos=STATUS_QOS, retain=True)
        except Exception as e:
            logger.warning("[MQTT] Failed to publish %s status for broker %s: %s", status, self.broker_id, e)

    # ------------------------------------------------------------------
    # Callbacks de paho (hilo de red)
    # ------------------------------------------------------------------

    def _handle_connect(self, client, userdata, connect_flags, reason_code, properties=None):
        stale = None
        connected = False
        with self._lock:
            if not self._is_current(client):
                return

            if not _connack_failed(reason_code):
                self._state = ConnectionState.CONNECTED
                self._reconnect_attempts = 0
                self._exhausted = False
                self._cancel_reconnect()
                self._cancel_pending_connect()
                self._publish_status(STATUS_ONLINE)
                connected = True
                metrics.MQTT_CONNECTION_EVENTS.labels(event="connected").inc()
                logger.info(
                    "[MQTT] Connected to broker %s (%s)",
                    self.endpoint.address,
                    "mqtts" if self._secure_attempt else "mqtt",
                )
            else:
                auth_failure = is_authorization_failure(reason_code)
                metrics.MQTT_CONNECTION_EVENTS.labels(
                    event="auth_failed" if auth_failure else "connect_failed"
                ).inc()
                logger.error(
                    "[MQTT] Connection refused by broker %s: %s",
                    self.endpoint.address,
                    reason_code,
                )
                stale = self._fail_attempt_locked(auth_failure=auth_failure)

        if connected:
            self._dispatch(self._after_connected)
        self._dispose(stale)

    def _handle_connect_fail(self, client, userdata):
        with self._lock:
            if not self._is_current(client):
                return
            metrics.MQTT_CONNECTION_EVENTS.labels(event="connect_failed").inc()
            logger.error("[MQTT] Error connecting to broker %s", self.endpoint.address)
            stale = self._fail_attempt_locked(auth_failure=False)
        self._dispose(stale)

    def _handle_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        with self._lock:
            if not self._is_current(client):
                return
            metrics.MQTT_CONNECTION_EVENTS.labels(event="disconnected").inc()
            logger.warning("[MQTT] Disconnected from broker %s (rc=%s)", self.endpoint.address, reason_code)
            stale = self._fail_attempt_locked(auth_failure=False)
        self._dispose(stale)

    def _handle_message(self, client, userdata, message):
        with self._lock:
            if not self._is_current(client):
                return
        self._dispatch(self._deliver, message.topic, bytes(message.payload))

    def _handle_subscribe_ack(self, client, userdata, mid, reason_code_list, properties=None):
        ok = not any(_ack_failed(rc) for rc in (reason_code_list or []))
        self._resolve_ack((client, mid), ok)

    def _handle_unsubscribe_ack(self, client, userdata, mid, reason_code_list, properties=None):
        ok = not any(_ack_failed(rc) for rc in (reason_code_list or []))
        self._resolve_ack((client, mid), ok)

    # ------------------------------------------------------------------
    # Worker del supervisor
    # ------------------------------------------------------------------

    def _dispatch(self, func: Callable[..., Any], *args: Any) -> None:
        try:
            self._worker.submit(self._guarded, func, *args)
        except RuntimeError:
            # Worker apagado: el supervisor ya fue cerrado
            logger.debug("[MQTT] Dropping %s for closed broker %s", getattr(func, "__name__", func), self.broker_id)

    def _guarded(self, func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception:
            logger.exception("[MQTT] Worker job %s failed for broker %s", getattr(func, "__name__", func), self.broker_id)

    def _after_connected(self) -> None:
        if self._closed:
            return
        if self.subscriptions is not None:
            self.subscriptions.reconcile_active_topics()

    def _deliver(self, topic: str, payload: bytes) -> None:
        if self._on_message is not None:
            self._on_message(InboundMessage(self.broker_id, topic, payload))

    # ------------------------------------------------------------------
    # Reconexión: intervalo fijo, tope fijo de intentos
    # ------------------------------------------------------------------

    def _start_reconnect(self) -> None:
        """Arranca el timer de reconexión (bajo lock). Idempotente."""
        if self._closed or self._exhausted or self._state == ConnectionState.CONNECTED:
            return
        if self._reconnect_task is not None and self._reconnect_task.active:
            return
        logger.info(
            "[RECONNECT] Scheduling reconnection for broker %s every %.0fs",
            self.endpoint.address,
            self.policy.reconnect_interval_seconds,
        )
        self._reconnect_task = self._scheduler.call_every(
            self.policy.reconnect_interval_seconds,
            self._reconnect_tick,
            name=f"reconnect-{self.broker_id[:8]}",
        )

    def _reconnect_tick(self) -> None:
        stale = None
        with self._lock:
            if self._closed or self._state == ConnectionState.CONNECTED:
                self._cancel_reconnect()
                return
            if self._attempt_in_progress():
                logger.debug("[RECONNECT] Attempt still in progress for broker %s, skipping tick", self.endpoint.address)
                return

            self._reconnect_attempts += 1
            metrics.MQTT_RECONNECT_ATTEMPTS.inc()
            mode = "TLS" if self._should_use_tls(self._using_plaintext_fallback) else "plaintext"
            logger.info(
                "[RECONNECT] Reconnection attempt %d/%d for broker %s (%s)",
                self._reconnect_attempts,
                self.policy.max_reconnect_attempts,
                self.endpoint.address,
                mode,
            )

            if self._reconnect_attempts >= self.policy.max_reconnect_attempts:
                logger.error(
                    "[RECONNECT] Max reconnection attempts reached for broker %s. Stopping reconnection.",
                    self.endpoint.address,
                )
                metrics.MQTT_RECONNECT_EXHAUSTED.inc()
                self._exhausted = True
                self._cancel_reconnect()
                self._cancel_pending_connect()
                return

            stale = self._detach_client()
            self._state = ConnectionState.DISCONNECTED
            self._schedule_connect(
                self.policy.reconnect_delay_seconds,
                force_plaintext=self._using_plaintext_fallback,
            )
        self._dispose(stale)

    def _attempt_in_progress(self) -> bool:
        """True si hay un connect programado o un intento que aún no venció."""
        if self._pending_connect is not None and self._pending_connect.active:
            return True
        if self._state != ConnectionState.CONNECTING:
            return False
        return time.monotonic() - self._attempt_started < self.policy.connect_timeout_seconds

    def _schedule_connect(self, delay: float, force_plaintext: bool) -> None:
        self._cancel_pending_connect()
        generation = self._connect_generation
        self._pending_connect = self._scheduler.call_later(
            delay,
            lambda: self._connect(force_plaintext, generation=generation),
            name=f"connect-{self.broker_id[:8]}",
        )

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    def _cancel_pending_connect(self) -> None:
        # Invalida también un connect que ya despertó y espera el lock
        self._connect_generation += 1
        if self._pending_connect is not None:
            self._pending_connect.cancel()
            self._pending_connect = None

    # ------------------------------------------------------------------
    # Operaciones de cable con ack (SUBSCRIBE / UNSUBSCRIBE)
    # ------------------------------------------------------------------

    def wire_subscribe(self, topic: str, timeout: float) -> bool:
        return self._request_ack("subscribe", topic, timeout)

    def wire_unsubscribe(self, topic: str, timeout: float) -> bool:
        return self._request_ack("unsubscribe", topic, timeout)

    def _request_ack(self, op: str, topic: str, timeout: float) -> bool:
        with self._lock:
            client = self._client
            if client is None or self._state != ConnectionState.CONNECTED:
                return False
            try:
                if op == "subscribe":
                    rc, mid = client.subscribe(topic, qos=SUBSCRIBE_QOS)
                else:
                    rc, mid = client.unsubscribe(topic)
            except Exception as e:
                logger.error("[SUBS] %s %s rejected on broker %s: %s", op, topic, self.broker_id, e)
                return False
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error("[SUBS] %s %s failed on broker %s: rc=%s", op, topic, self.broker_id, rc)
                return False
            key = (client, mid)
            pending = self._register_ack(key)

        if not pending.event.wait(timeout):
            self._forget_ack(key)
            logger.warning(
                "[SUBS] %s %s on broker %s timed out after %.1fs",
                op,
                topic,
                self.broker_id,
                timeout,
            )
            return False
        return pending.ok

    def _register_ack(self, key: Tuple[Any, int]) -> _PendingAck:
        pending = _PendingAck()
        with self._ack_lock:
            if key in self._early_acks:
                pending.resolve(self._early_acks.pop(key))
            else:
                self._pending_acks[key] = pending
        return pending

    def _resolve_ack(self, key: Tuple[Any, int], ok: bool) -> None:
        with self._ack_lock:
            pending = self._pending_acks.pop(key, None)
            if pending is None:
                if key in self._timed_out_acks:
                    # Ack tardío de una operación que ya venció
                    self._timed_out_acks.discard(key)
                    return
                # El ack llegó antes de registrar el mid
                self._early_acks[key] = ok
                return
        pending.resolve(ok)

    def _forget_ack(self, key: Tuple[Any, int]) -> None:
        with self._ack_lock:
            if self._pending_acks.pop(key, None) is not None:
                self._timed_out_acks.add(key)
            self._early_acks.pop(key, None)

    def _fail_pending_acks(self, client: Any) -> None:
        with self._ack_lock:
            keys = [k for k in self._pending_acks if k[0] is client]
            pending = [self._pending_acks.pop(k) for k in keys]
            for k in [k for k in self._early_acks if k[0] is client]:
                del self._early_acks[k]
            self._timed_out_acks = {k for k in self._timed_out_acks if k[0] is not client}
        for p in pending:
            p.resolve(False)

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Estado de solo lectura para status."""
        with self._lock:
            data = {
                "broker_id": self.broker_id,
                "host": self.endpoint.host,
                "port": self.endpoint.port,
                "state": self._state.value,
                "is_connected": self._state == ConnectionState.CONNECTED,
                "using_plaintext_fallback": self._using_plaintext_fallback,
                "reconnect_attempts": self._reconnect_attempts,
                "reconnect_timer_active": self._reconnect_task is not None and self._reconnect_task.active,
                "client_id": self.client_id,
            }
        data["subscribed_topics"] = self.subscriptions.topics() if self.subscriptions is not None else []
        return data

    def __repr__(self) -> str:
        return f"ConnectionSupervisor(broker={self.endpoint.address}, client_id={self.client_id}, state={self._state.value})"
