"""Aplicación FastAPI del monitor de brokers.

El lifespan arma el núcleo MQTT (store, forwarder, registro, lifecycle),
registra los brokers de la BD al arrancar y cierra todas las conexiones al
terminar (uvicorn dispara el cierre del lifespan con SIGINT/SIGTERM).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import get_engine, make_session_factory

from .endpoints import brokers_router, health_router, status_router, topics_router
from .mqtt.config import ConnectionPolicy
from .mqtt.forwarder import MessageForwarder
from .mqtt.lifecycle import LifecycleController
from .mqtt.registry import BrokerRegistry
from .persistence import MonitorStore, ensure_schema

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    policy: Optional[ConnectionPolicy] = None,
    client_factory: Optional[Callable[[str], Any]] = None,
    tls_context_factory: Optional[Callable[[str], Any]] = None,
    scheduler: Optional[Any] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("[STARTUP] Starting IoT Broker Monitor (env=%s)", settings.environment)

        db_engine = engine or get_engine()
        ensure_schema(db_engine)
        session_factory = make_session_factory(db_engine)

        connection_policy = policy or ConnectionPolicy.from_env()
        store = MonitorStore(session_factory)
        if not settings.front_end_url:
            logger.warning("[STARTUP] FRONT_END_URL not set - inbound messages will be dropped")
        forwarder = MessageForwarder(store, settings.front_end_url, timeout=connection_policy.forward_timeout_seconds)
        registry = BrokerRegistry(
            store,
            forwarder,
            connection_policy,
            client_factory=client_factory,
            tls_context_factory=tls_context_factory,
            scheduler=scheduler,
        )
        lifecycle = LifecycleController(registry, store, connection_policy, scheduler=scheduler)

        app.state.settings = settings
        app.state.session_factory = session_factory
        app.state.store = store
        app.state.registry = registry
        app.state.lifecycle = lifecycle

        lifecycle.bootstrap()
        try:
            yield
        finally:
            lifecycle.shutdown()
            logger.info("[SHUTDOWN] IoT Broker Monitor stopped")

    app = FastAPI(title="IoT Broker Monitor", version="0.1.0", lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(brokers_router)
    app.include_router(topics_router)
    app.include_router(status_router)
    return app


app = create_app()
