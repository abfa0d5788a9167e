# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from routine_audit.cli.bootstrap import create_initial_state
from routine_audit.core.passwords import hash_password
from routine_audit.core.session import Session, SessionStore
from routine_audit.core.state import AppState

from .fakes import FakeGateway

FAST_ROUNDS = 4  # bcrypt minimum; keeps tests quick

# 09:00 UTC on a Wednesday
FIXED_NOW = datetime(2026, 10, 14, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="routine-audit-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        db_path=tmp_path / "audit.sqlite3",
        session_path=tmp_path / "session.json",
        timezone="UTC",
        inactivity_timeout_seconds=600,
        inactivity_check_seconds=60,
        bcrypt_rounds=FAST_ROUNDS,
        admin_fetch_limit=100,
        bootstrap_admin_email="boss@example.com",
        bootstrap_admin_password="boss-secret",
        bootstrap_admin_name="Boss",
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """AppState wired exactly like the CLI, on a temporary SQLite file."""
    return create_initial_state(settings=settings)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def session(gateway: FakeGateway, tmp_path: Path) -> Session:
    return Session(gateway, SessionStore(tmp_path / "session.json"), bcrypt_rounds=FAST_ROUNDS)


def seed_user(gateway: FakeGateway, *, email: str, password: str = "secret-pw", user_type: str = "user", **extra):
    return gateway.seed(
        "users",
        email=email,
        name=extra.pop("name", email.split("@")[0]),
        password_hash=hash_password(password, rounds=FAST_ROUNDS),
        user_type=user_type,
        disabled=extra.pop("disabled", False),
        **extra,
    )
