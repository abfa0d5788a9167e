# tests/test_session.py

from __future__ import annotations

import hashlib
import json

import pytest

from routine_audit.core.errors import AccountDisabledError, AuthenticationError, AuthorizationError
from routine_audit.core.passwords import is_legacy_hash, verify_password
from routine_audit.core.session import InactivityMonitor, Session, SessionStore

from .conftest import FAST_ROUNDS, seed_user


@pytest.mark.asyncio
async def test_login_normalizes_email_and_persists_identity(gateway, session, tmp_path) -> None:
    row = seed_user(gateway, email="emp@example.com", name="Emp")

    user = await session.login("  EMP@Example.com ", "secret-pw")

    assert user.id == row["id"]
    assert session.is_authenticated
    stored = json.loads((tmp_path / "session.json").read_text("utf-8"))
    assert stored["audit_user"]["email"] == "emp@example.com"
    assert "password_hash" not in stored["audit_user"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("email", "password"),
    [("emp@example.com", "wrong-pw"), ("nobody@example.com", "secret-pw"), ("", "secret-pw"), ("emp@example.com", "")],
)
async def test_bad_credentials_share_one_message(gateway, session, email, password) -> None:
    seed_user(gateway, email="emp@example.com")

    with pytest.raises(AuthenticationError) as exc:
        await session.login(email, password)

    assert str(exc.value) == "Invalid email or password"
    assert not session.is_authenticated


@pytest.mark.asyncio
async def test_disabled_account_reported_only_after_password_matches(gateway, session) -> None:
    seed_user(gateway, email="gone@example.com", disabled=True)

    with pytest.raises(AuthenticationError) as wrong:
        await session.login("gone@example.com", "not-it")
    assert not isinstance(wrong.value, AccountDisabledError)

    with pytest.raises(AccountDisabledError):
        await session.login("gone@example.com", "secret-pw")
    assert not session.is_authenticated


@pytest.mark.asyncio
async def test_legacy_hash_verifies_and_is_upgraded(gateway, session) -> None:
    legacy = hashlib.sha256(b"old-password").hexdigest()
    row = gateway.seed("users", email="old@example.com", name="Old", password_hash=legacy, user_type="user")

    await session.login("old@example.com", "old-password")

    new_hash = gateway.tables["users"][row["id"]]["password_hash"]
    assert not is_legacy_hash(new_hash)
    assert verify_password("old-password", new_hash)


@pytest.mark.asyncio
async def test_hydrate_restores_identity_across_instances(gateway, session, tmp_path) -> None:
    seed_user(gateway, email="emp@example.com")
    await session.login("emp@example.com", "secret-pw")

    fresh = Session(gateway, SessionStore(tmp_path / "session.json"), bcrypt_rounds=FAST_ROUNDS)

    assert fresh.hydrate().email == "emp@example.com"


def test_corrupt_session_file_is_discarded(tmp_path) -> None:
    path = tmp_path / "session.json"
    path.write_text("{not json", "utf-8")

    assert SessionStore(path).load() is None
    assert not path.exists()


@pytest.mark.asyncio
async def test_logout_clears_storage_and_notifies(gateway, session, tmp_path) -> None:
    seed_user(gateway, email="emp@example.com")
    await session.login("emp@example.com", "secret-pw")
    reasons: list[str] = []
    session.on_logout(reasons.append)

    session.logout()
    session.logout()  # already signed out: no second notification

    assert reasons == ["logout"]
    assert not (tmp_path / "session.json").exists()
    with pytest.raises(AuthorizationError):
        session.require_user()


@pytest.mark.asyncio
async def test_login_over_live_session_ends_it_first(gateway, session, tmp_path) -> None:
    seed_user(gateway, email="boss@example.com", user_type="admin", name="Boss")
    emp = seed_user(gateway, email="emp@example.com", name="Emp")
    await session.login("boss@example.com", "secret-pw")
    reasons: list[str] = []
    session.on_logout(reasons.append)

    with pytest.raises(AuthenticationError):
        await session.login("emp@example.com", "wrong-pw")
    assert reasons == []
    assert session.require_admin().email == "boss@example.com"

    user = await session.login("emp@example.com", "secret-pw")

    assert reasons == ["relogin"]
    assert session.require_employee().id == emp["id"] == user.id
    stored = json.loads((tmp_path / "session.json").read_text("utf-8"))
    assert stored["audit_user"]["email"] == "emp@example.com"


@pytest.mark.asyncio
async def test_role_guards(gateway, session) -> None:
    seed_user(gateway, email="emp@example.com")
    await session.login("emp@example.com", "secret-pw")

    assert session.require_employee().email == "emp@example.com"
    with pytest.raises(AuthorizationError):
        session.require_admin()


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_inactivity_logs_out_after_timeout(gateway, session) -> None:
    seed_user(gateway, email="emp@example.com")
    await session.login("emp@example.com", "secret-pw")
    clock = _Clock()
    monitor = InactivityMonitor(session, timeout=600, check_interval=60, clock=clock)
    reasons: list[str] = []
    session.on_logout(reasons.append)

    clock.now += 599
    assert monitor.check() is False

    monitor.touch()
    clock.now += 599
    assert monitor.check() is False
    assert session.is_authenticated

    clock.now += 1
    assert monitor.check() is True
    assert reasons == ["inactivity"]
    assert not session.is_authenticated


def test_inactivity_ignores_signed_out_session(session) -> None:
    clock = _Clock()
    monitor = InactivityMonitor(session, timeout=1, clock=clock)
    clock.now += 10

    assert monitor.check() is False
