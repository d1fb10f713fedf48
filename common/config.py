from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    return str(Path.cwd() / ".env")


@dataclass(frozen=True)
class Settings:
    database_url: str
    front_end_url: Optional[str]

    server_host: str
    server_port: int

    api_key: Optional[str]
    environment: str
    log_level: str

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("MONITOR_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    database_url = os.getenv("DATABASE_URL", "sqlite:///./iot_monitor.db")

    # Base URL of the downstream consumer; forwarded messages go to {url}/messages.
    front_end_url = (os.getenv("FRONT_END_URL") or "").strip().rstrip("/") or None

    return Settings(
        database_url=database_url,
        front_end_url=front_end_url,
        server_host=os.getenv("SERVER_HOST", "0.0.0.0"),
        server_port=int(os.getenv("SERVER_PORT", "3333")),
        api_key=os.getenv("MONITOR_API_KEY") or None,
        environment=os.getenv("ENVIRONMENT", "development").strip().lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
