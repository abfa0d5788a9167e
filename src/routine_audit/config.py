# src/routine_audit/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Tests build their own settings object instead of reading the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "AUDIT"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
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

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    session_path: Path

    # ---- Organization calendar ----
    timezone: str

    # ---- Session ----
    inactivity_timeout_seconds: int
    inactivity_check_seconds: int
    bcrypt_rounds: int

    # ---- Admin board ----
    admin_fetch_limit: int

    # ---- First-run admin account (optional) ----
    bootstrap_admin_email: str
    bootstrap_admin_password: str
    bootstrap_admin_name: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "routine-audit") or "routine-audit"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/routine_audit"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "audit.sqlite3")
        session_path = _env_path(_k("SESSION_PATH"), data_dir / "session.json")

        timezone = _env(_k("TIMEZONE"), "UTC").strip() or "UTC"

        inactivity_timeout_seconds = _env_int(_k("INACTIVITY_TIMEOUT_SECONDS"), 600)
        inactivity_check_seconds = _env_int(_k("INACTIVITY_CHECK_SECONDS"), 60)
        bcrypt_rounds = _env_int(_k("BCRYPT_ROUNDS"), 12)

        admin_fetch_limit = _env_int(_k("ADMIN_FETCH_LIMIT"), 100)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            session_path=session_path,
            timezone=timezone,
            inactivity_timeout_seconds=inactivity_timeout_seconds,
            inactivity_check_seconds=inactivity_check_seconds,
            bcrypt_rounds=bcrypt_rounds,
            admin_fetch_limit=admin_fetch_limit,
            bootstrap_admin_email=_env(_k("BOOTSTRAP_ADMIN_EMAIL")).strip(),
            bootstrap_admin_password=_env(_k("BOOTSTRAP_ADMIN_PASSWORD")),
            bootstrap_admin_name=_env(_k("BOOTSTRAP_ADMIN_NAME"), "Administrator").strip(),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
