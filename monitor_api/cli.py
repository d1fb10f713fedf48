"""CLI entry point: levanta la API de gestión con uvicorn."""

from __future__ import annotations

import argparse
import logging

import uvicorn

from common.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    p = argparse.ArgumentParser(description="IoT Broker Monitor (MQTT broker connection manager)")
    p.add_argument("--host", default=settings.server_host)
    p.add_argument("--port", type=int, default=settings.server_port)
    p.add_argument("--log-level", default=settings.log_level)
    args = p.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    # paho loguea cada paquete en DEBUG
    logging.getLogger("paho").setLevel(logging.WARNING)

    logger.info("IoT Broker Monitor starting on %s:%d", args.host, args.port)
    uvicorn.run(
        "monitor_api.main:app",
        host=args.host,
        port=args.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
