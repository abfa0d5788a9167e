# src/routine_audit/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, restores the stored session, then runs the console
loop with the inactivity monitor beside it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state, ensure_bootstrap_admin
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.errors import AuditError
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _wire_logout(state: AppState) -> None:
    def _on_logout(reason: str) -> None:
        if reason == "inactivity":
            print("\nSession ended after inactivity. Please /login again.")

    state.session.on_logout(_on_logout)


async def _resume_session(state: AppState) -> None:
    user = state.session.hydrate()
    if user is None:
        return
    try:
        if user.is_admin:
            state.admin_board.start()
            await state.admin_board.refresh()
        else:
            state.employee_board.start()
            await state.employee_board.refresh()
    except AuditError:
        logger.warning("Could not load data for the restored session", exc_info=True)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    state.employee_board.stop()
    state.admin_board.stop()
    try:
        await state.materializer.drain()
    except Exception:
        logger.exception("Pending routine inserts failed during shutdown.")
    close = getattr(state.gateway, "close", None)
    if callable(close):
        close()


async def run(state: AppState) -> None:
    _wire_logout(state)
    try:
        await ensure_bootstrap_admin(state)
    except AuditError:
        logger.exception("Bootstrap admin creation failed.")
    await _resume_session(state)

    monitor = asyncio.create_task(state.monitor.run())
    try:
        await run_console_loop(state)
    finally:
        monitor.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await monitor
        await _shutdown(state)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)
    try:
        asyncio.run(run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    logger.info("Bye.")


if __name__ == "__main__":
    main()
