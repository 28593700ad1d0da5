# src/dealer_crm/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing required at import time; every key has a working local default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "CRM"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool

    # ---- Identity ----
    # Owner recorded on every new customer and task.
    user_id: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    export_dir: Path

    # ---- Remote calls ----
    remote_timeout_seconds: float
    retry_max_attempts: int
    retry_backoff_seconds: float

    # ---- Bulk import pacing ----
    batch_concurrency: int
    batch_delay_seconds: float

    # ---- Realtime ----
    realtime_reconnect_seconds: float

    @staticmethod
    def from_env() -> Settings:
        app_name = _first_env(_k("APP_NAME"), default="dealer-crm") or "dealer-crm"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        user_id = (_first_env(_k("USER_ID"), "USER", default="local") or "local").strip()

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/dealer_crm"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "crm.sqlite3")
        export_dir = _env_path(_k("EXPORT_DIR"), data_dir / "exports")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            user_id=user_id,
            data_dir=data_dir,
            db_path=db_path,
            export_dir=export_dir,
            remote_timeout_seconds=_env_float(_k("REMOTE_TIMEOUT_SECONDS"), 30.0),
            retry_max_attempts=_env_int(_k("RETRY_MAX_ATTEMPTS"), 3),
            retry_backoff_seconds=_env_float(_k("RETRY_BACKOFF_SECONDS"), 1.0),
            batch_concurrency=_env_int(_k("BATCH_CONCURRENCY"), 4),
            batch_delay_seconds=_env_float(_k("BATCH_DELAY_SECONDS"), 0.3),
            realtime_reconnect_seconds=_env_float(_k("REALTIME_RECONNECT_SECONDS"), 3.0),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
