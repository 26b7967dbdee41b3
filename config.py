from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

POLLING = "polling"
WEBHOOK = "webhook"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and `.env`)."""

    bot_token: str
    mode: str = POLLING
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    poll_timeout: int = 30
    send_timeout: int = 10
    link_code_ttl: int = 600
    link_code_sweep_interval: int = 300
    db_backend: str = "sqlite"
    db_path: str = "tracker.db"
    pg_params: Dict[str, str] = field(default_factory=dict)
    http_host: str = "0.0.0.0"
    http_port: int = 3001
    app_base_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        token = os.environ.get("TELEGRAM_BOT_TOKEN")
        if not token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN environment variable is not set.")

        mode = os.environ.get("TELEGRAM_MODE", POLLING).lower()
        if mode not in (POLLING, WEBHOOK):
            raise RuntimeError(f"TELEGRAM_MODE must be '{POLLING}' or '{WEBHOOK}', got {mode!r}")

        webhook_url = os.environ.get("TELEGRAM_WEBHOOK_URL") or None
        if mode == WEBHOOK and not webhook_url:
            raise RuntimeError("TELEGRAM_WEBHOOK_URL is required in webhook mode.")

        db_backend = os.environ.get("DB_BACKEND", "sqlite").lower()
        pg_params = {
            "host": os.environ.get("PG_HOST", "localhost"),
            "port": os.environ.get("PG_PORT", "5432"),
            "dbname": os.environ.get("PG_DATABASE", "tracker"),
            "user": os.environ.get("PG_USER", "postgres"),
            "password": os.environ.get("PG_PASSWORD", ""),
        }

        return cls(
            bot_token=token,
            mode=mode,
            webhook_url=webhook_url,
            webhook_secret=os.environ.get("TELEGRAM_WEBHOOK_SECRET") or None,
            poll_timeout=_env_int("TELEGRAM_POLL_TIMEOUT", 30),
            send_timeout=_env_int("TELEGRAM_SEND_TIMEOUT", 10),
            link_code_ttl=_env_int("LINK_CODE_TTL_SECONDS", 600),
            link_code_sweep_interval=_env_int("LINK_CODE_SWEEP_SECONDS", 300),
            db_backend=db_backend,
            db_path=os.environ.get("DB_PATH", "tracker.db"),
            pg_params=pg_params,
            http_host=os.environ.get("HTTP_HOST", "0.0.0.0"),
            http_port=_env_int("HTTP_PORT", 3001),
            app_base_url=os.environ.get("APP_BASE_URL") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
