# src/routine_audit/core/session.py

"""
Session / identity context.

The Session object is created once in the composition root and passed explicitly to the
boards and commands (no module-level "current user"). Lifecycle:

- hydrate(): reload the identity from durable storage (JSON file, fixed key)
- login():   verify credentials against the users table, persist the identity
- logout():  clear storage, notify listeners (boards stop their subscriptions)

InactivityMonitor forces a logout after a fixed idle period. It is advisory and
client-side only.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from .errors import AccountDisabledError, AuthenticationError, AuthorizationError, PersistenceError
from .models import User
from .passwords import DEFAULT_ROUNDS, hash_password, needs_rehash, verify_password
from .ports import PersistenceGateway

logger = logging.getLogger(__name__)

SESSION_KEY = "audit_user"
INVALID_CREDENTIALS = "Invalid email or password"

LogoutListener = Callable[[str], None]


class SessionStore:
    """Durable client-local storage for the signed-in identity."""

    def __init__(self, path: str | Path, *, key: str = SESSION_KEY) -> None:
        self._path = Path(path)
        self._key = key

    def load(self) -> User | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text("utf-8"))
            raw = data.get(self._key) if isinstance(data, dict) else None
            if raw is None:
                return None
            if not isinstance(raw, dict):
                raise ValueError("identity payload is not an object")
            return User.from_row(raw)
        except (ValueError, KeyError, TypeError):
            logger.exception("Stored session at %s is unreadable; discarding it", self._path)
            self.clear()
            return None

    def save(self, user: User) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps({self._key: user.to_public_dict()}, ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(OSError):
            # Best-effort: keep the identity file private on disk.
            os.chmod(self._path, 0o600)

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()


class Session:
    def __init__(
            self,
            gateway: PersistenceGateway,
            store: SessionStore,
            *,
            bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._rounds = bcrypt_rounds
        self._user: User | None = None
        self._listeners: list[LogoutListener] = []

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def hydrate(self) -> User | None:
        self._user = self._store.load()
        if self._user is not None:
            logger.info("Session restored for %s", self._user.email)
        return self._user

    async def login(self, email: str, password: str) -> User:
        email_norm = (email or "").strip().lower()
        if not email_norm or not password:
            raise AuthenticationError(INVALID_CREDENTIALS)

        rows = await self._gateway.select("users", eq={"email": email_norm}, joins=("role",))
        if not rows:
            logger.info("Login failed: unknown account")
            raise AuthenticationError(INVALID_CREDENTIALS)

        user = User.from_row(rows[0])
        if not verify_password(password, user.password_hash):
            logger.info("Login failed: bad credentials for user_id=%s", user.id)
            raise AuthenticationError(INVALID_CREDENTIALS)

        # Reported only once the password matched.
        if user.disabled:
            logger.info("Login refused: disabled user_id=%s", user.id)
            raise AccountDisabledError("This account is disabled. Please contact an administrator.")

        if needs_rehash(user.password_hash):
            await self._upgrade_hash(user, password)

        # Signing in over a live session ends it first so its listeners tear down.
        if self._user is not None:
            self.logout("relogin")
        self._user = user
        self._store.save(user)
        logger.info("User %s signed in (%s)", user.email, user.user_type.value)
        return user

    async def _upgrade_hash(self, user: User, password: str) -> None:
        try:
            await self._gateway.update(
                "users", user.id, {"password_hash": hash_password(password, rounds=self._rounds)}
            )
            logger.info("Upgraded legacy password hash for user_id=%s", user.id)
        except PersistenceError:
            logger.warning("Could not upgrade legacy password hash for user_id=%s", user.id, exc_info=True)

    def logout(self, reason: str = "logout") -> None:
        was = self._user
        self._user = None
        self._store.clear()
        if was is None:
            return
        logger.info("User %s signed out (%s)", was.email, reason)
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Logout listener failed")

    def on_logout(self, listener: LogoutListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def require_user(self) -> User:
        if self._user is None:
            raise AuthorizationError("Please sign in first.")
        return self._user

    def require_admin(self) -> User:
        user = self.require_user()
        if not user.is_admin:
            raise AuthorizationError("Administrator access required.")
        return user

    def require_employee(self) -> User:
        user = self.require_user()
        if user.is_admin:
            raise AuthorizationError("This action is for employees.")
        return user


class InactivityMonitor:
    """
    Idle-timeout loop.

    Every check_interval seconds: if the session is signed in and nothing called touch()
    for `timeout` seconds, the session is logged out. To stop, cancel the coroutine/task.
    """

    def __init__(
            self,
            session: Session,
            *,
            timeout: float = 600.0,
            check_interval: float = 60.0,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._timeout = float(timeout)
        self._interval = max(0.01, float(check_interval))
        self._clock = clock
        self._last_activity = clock()

    def touch(self) -> None:
        self._last_activity = self._clock()

    def expired(self) -> bool:
        return self._clock() - self._last_activity >= self._timeout

    def check(self) -> bool:
        """Log out when idle too long. Returns True if a logout happened."""
        if not self._session.is_authenticated or not self.expired():
            return False
        self._session.logout("inactivity")
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.check()
