# src/kanban_sync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app, passed explicitly to the composition root.
- No secrets required at import time.
- Sync is off unless a provider is configured (local-only is a valid deployment).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ENV_PREFIX = "KANBAN"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_opt(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


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

    # ---- Local data (ignored by git) ----
    data_dir: Path
    db_path: Path
    device_id: Optional[str]

    # ---- Cloud sync ----
    sync_provider: str
    sync_folder: Optional[Path]
    sync_url: Optional[str]
    sync_token: Optional[str]
    sync_key: str
    http_timeout_seconds: float

    # ---- Sync tuning ----
    poll_interval_seconds: float
    startup_timeout_seconds: float
    debounce_seconds: float
    retry_attempts: int
    retry_delay_seconds: float

    # ---- Retention ----
    retention_days: int
    sweep_interval_hours: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "Kanban Todo Board")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/kanban"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "board.sqlite3")
        device_id = _env_opt(_k("DEVICE_ID"))

        sync_folder_raw = _env_opt(_k("SYNC_FOLDER"))
        sync_folder = Path(sync_folder_raw).expanduser() if sync_folder_raw else None

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            db_path=db_path,
            device_id=device_id,
            sync_provider=_env(_k("SYNC_PROVIDER"), "none").strip().lower() or "none",
            sync_folder=sync_folder,
            sync_url=_env_opt(_k("SYNC_URL")),
            sync_token=_env_opt(_k("SYNC_TOKEN")),
            sync_key=_env(_k("SYNC_KEY"), "kanban-data").strip() or "kanban-data",
            http_timeout_seconds=_env_float(_k("HTTP_TIMEOUT_SECONDS"), 10.0),
            poll_interval_seconds=_env_float(_k("POLL_INTERVAL_SECONDS"), 20.0),
            startup_timeout_seconds=_env_float(_k("STARTUP_TIMEOUT_SECONDS"), 8.0),
            debounce_seconds=_env_float(_k("DEBOUNCE_SECONDS"), 10.0),
            retry_attempts=_env_int(_k("RETRY_ATTEMPTS"), 3),
            retry_delay_seconds=_env_float(_k("RETRY_DELAY_SECONDS"), 2.0),
            retention_days=_env_int(_k("RETENTION_DAYS"), 30),
            sweep_interval_hours=_env_float(_k("SWEEP_INTERVAL_HOURS"), 24.0),
        )


_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    """Settings from the environment, read once per process."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
