# tests/test_config.py

from __future__ import annotations

from pathlib import Path

from routine_audit.config import Settings


def test_defaults_without_environment(monkeypatch) -> None:
    for name in ("AUDIT_DATA_DIR", "AUDIT_DB_PATH", "AUDIT_TIMEZONE", "AUDIT_BCRYPT_ROUNDS", "AUDIT_APP_NAME"):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()

    assert s.app_name == "routine-audit"
    assert s.data_dir == Path(".local/routine_audit")
    assert s.db_path == s.data_dir / "audit.sqlite3"
    assert s.timezone == "UTC"
    assert s.bcrypt_rounds == 12
    assert s.inactivity_timeout_seconds == 600


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AUDIT_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("AUDIT_DB_PATH", raising=False)
    monkeypatch.setenv("AUDIT_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("AUDIT_ADMIN_FETCH_LIMIT", "not-a-number")
    monkeypatch.setenv("AUDIT_BOOTSTRAP_ADMIN_EMAIL", "  root@example.com ")

    s = Settings.from_env()

    assert s.db_path == tmp_path / "audit.sqlite3"
    assert s.timezone == "Europe/Berlin"
    assert s.admin_fetch_limit == 100
    assert s.bootstrap_admin_email == "root@example.com"
