# src/routine_audit/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the gateway, session, materializer and boards into AppState,
- optionally creates the first administrator account.
"""

from __future__ import annotations

import logging

from ..assignments.materializer import RoutineMaterializer
from ..boards.admin import AdminBoard
from ..boards.employee import EmployeeBoard
from ..config import get_settings
from ..core.clock import org_zone
from ..core.passwords import hash_password
from ..core.session import InactivityMonitor, Session, SessionStore
from ..core.state import AppState
from ..storage.sqlite_gateway import SqliteGateway

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.session_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    tz = org_zone(settings.timezone)
    gateway = SqliteGateway(settings.db_path)
    session = Session(gateway, SessionStore(settings.session_path), bcrypt_rounds=settings.bcrypt_rounds)
    materializer = RoutineMaterializer(gateway, tz=tz)
    employee_board = EmployeeBoard(gateway, session, materializer)
    admin_board = AdminBoard(
        gateway,
        session,
        tz=tz,
        fetch_limit=settings.admin_fetch_limit,
        bcrypt_rounds=settings.bcrypt_rounds,
    )

    def _stop_boards(_reason: str) -> None:
        employee_board.stop()
        admin_board.stop()

    session.on_logout(_stop_boards)

    return AppState(
        settings=settings,
        gateway=gateway,
        session=session,
        tz=tz,
        materializer=materializer,
        employee_board=employee_board,
        admin_board=admin_board,
        monitor=InactivityMonitor(
            session,
            timeout=settings.inactivity_timeout_seconds,
            check_interval=settings.inactivity_check_seconds,
        ),
    )


async def ensure_bootstrap_admin(state: AppState) -> bool:
    """
    Create the first admin from AUDIT_BOOTSTRAP_ADMIN_* when no admin account exists yet.
    Returns True if an account was created.
    """
    settings = state.settings
    email = (getattr(settings, "bootstrap_admin_email", "") or "").strip().lower()
    password = getattr(settings, "bootstrap_admin_password", "") or ""
    if not email or not password:
        return False

    admins = await state.gateway.select("users", eq={"user_type": "admin"}, limit=1)
    if admins:
        return False

    await state.gateway.insert(
        "users",
        [
            {
                "email": email,
                "name": getattr(settings, "bootstrap_admin_name", "") or "Administrator",
                "password_hash": hash_password(password, rounds=settings.bcrypt_rounds),
                "user_type": "admin",
                "disabled": False,
            }
        ],
    )
    logger.info("Bootstrap admin account created for %s", email)
    return True
