# tests/test_commands.py

from __future__ import annotations

import pytest

from routine_audit.cli.bootstrap import ensure_bootstrap_admin
from routine_audit.cli.commands import CommandRegistry, registry, resolve_id
from routine_audit.core.errors import ValidationError
from routine_audit.core.models import Role


async def _settle(state) -> None:
    await state.materializer.drain()
    await state.employee_board.wait_idle()
    await state.admin_board.wait_idle()


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_command_registry_turns_domain_errors_into_replies(state) -> None:
    reg = CommandRegistry()

    async def boom(state, args):
        raise ValidationError("bad input")

    reg.register("boom", boom, "b", aliases=["b"])

    assert await reg.handle(state, "/b") == "Error: bad input"
    assert "/boom - b" in reg.build_help()


def test_resolve_id_accepts_unique_prefix() -> None:
    roles = [Role(id="abc123", name="A"), Role(id="abd456", name="B")]

    assert resolve_id("abc", roles, "role") == "abc123"
    assert resolve_id("abd456", roles, "role") == "abd456"
    with pytest.raises(ValidationError):
        resolve_id("ab", roles, "role")
    with pytest.raises(ValidationError):
        resolve_id("zz", roles, "role")


@pytest.mark.asyncio
async def test_commands_require_sign_in(state) -> None:
    assert await registry.handle(state, "/whoami") == "Not signed in."
    assert await registry.handle(state, "/tasks") == "Error: Please sign in first."


@pytest.mark.asyncio
async def test_bootstrap_admin_created_once(state) -> None:
    assert await ensure_bootstrap_admin(state) is True
    assert await ensure_bootstrap_admin(state) is False

    reply = await registry.handle(state, "/login boss@example.com boss-secret")
    assert reply == "Welcome, Boss (admin)."
    await _settle(state)


@pytest.mark.asyncio
async def test_full_day_flow(state) -> None:
    await ensure_bootstrap_admin(state)
    run = lambda line: registry.handle(state, line)  # noqa: E731

    # admin sets up staff, a task and a daily routine
    assert (await run("/login boss@example.com boss-secret")).startswith("Welcome")
    assert (await run("/addrole Cleaner")).startswith("Role created")
    role_id = state.admin_board.roles[0].id
    reply = await run(f"/adduser emp@example.com emp-secret user {role_id[:8]} Emma Employee")
    assert reply.startswith("Account created")
    assert (await run("/newtask Mop floor | all rooms")).startswith("Task created")
    emp_id = next(u.id for u in state.admin_board.users if u.email == "emp@example.com")
    task_id = state.admin_board.tasks[0].id
    assert await run(f"/assign {emp_id[:8]} {task_id[:8]} --routine") == "1 daily routine(s) created."
    assert await run("/logout") == "Signed out."
    await _settle(state)

    # employee sees the materialized routine and completes it
    assert (await run("/login emp@example.com emp-secret")).startswith("Welcome, Emma Employee")
    await _settle(state)
    listing = await run("/tasks")
    assert "Mop floor" in listing and "pending" in listing
    aid = state.employee_board.assignments[0].id
    assert not state.employee_board.assignments[0].is_placeholder

    assert (await run(f"/note {aid[:8]} all clean")).startswith("Note saved")
    assert await run(f"/done {aid[:8]}") == "Task sent for review."
    assert await run(f"/done {aid[:8]}") == "Error: This task was already submitted."
    assert await run("/report") == "Error: Administrator access required."
    await run("/logout")
    await _settle(state)

    # admin audits, flags a deficiency, reads the reports
    await run("/login boss@example.com boss-secret")
    audit = await run("/audit")
    assert "Mop floor @Emma Employee - done" in audit
    assert "notes: all clean" in audit
    assert (await run(f"/deficient {aid[:8]} streaks on the glass")).startswith("Deficiency recorded")
    report = await run("/report")
    assert "Emma Employee [Cleaner]: 0%" in report
    assert "deficient 1" in report
    assert "reason: streaks on the glass" in await run("/deficiencies")
    await _settle(state)

    # the reopened task is editable for the employee again
    await run("/logout")
    await run("/login emp@example.com emp-secret")
    await _settle(state)
    assert await run(f"/done {aid[:8]}") == "Task sent for review."
    await _settle(state)


@pytest.mark.asyncio
async def test_delete_needs_confirmation_flag(state) -> None:
    await ensure_bootstrap_admin(state)
    run = lambda line: registry.handle(state, line)  # noqa: E731
    await run("/login boss@example.com boss-secret")
    await run("/addrole Cook")
    role_id = state.admin_board.roles[0].id
    await run(f"/adduser cook@example.com cook-secret user {role_id[:8]} Carl Cook")
    await run("/newtask Peel potatoes")
    emp_id = next(u.id for u in state.admin_board.users if u.email == "cook@example.com")
    await run(f"/assign {emp_id[:8]} {state.admin_board.tasks[0].id[:8]} --due=2026-10-20")
    await _settle(state)
    await state.admin_board.refresh()
    aid = state.admin_board.assignments[0].id

    assert "needs confirmation" in await run(f"/delete {aid[:8]}")
    assert len(state.admin_board.assignments) == 1
    assert await run(f"/delete {aid[:8]} -y") == "Record deleted."
    assert state.admin_board.assignments == []
    await _settle(state)
    assert state.admin_board.assignments == []
    assert await state.gateway.select("assignments") == []


@pytest.mark.asyncio
async def test_login_over_admin_session_stops_admin_board(state) -> None:
    await ensure_bootstrap_admin(state)
    run = lambda line: registry.handle(state, line)  # noqa: E731
    await run("/login boss@example.com boss-secret")
    await run("/addrole Cook")
    role_id = state.admin_board.roles[0].id
    await run(f"/adduser cook@example.com cook-secret user {role_id[:8]} Carl Cook")
    await _settle(state)
    assert state.admin_board._unsubscribers

    assert (await run("/login cook@example.com cook-secret")).startswith("Welcome, Carl Cook")

    assert state.admin_board._unsubscribers == []
    assert state.employee_board._unsubscribers
    assert await run("/whoami") == "Carl Cook <cook@example.com> (user, role: Cook)"
    await _settle(state)
