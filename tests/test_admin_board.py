# tests/test_admin_board.py

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from routine_audit.boards.admin import AdminBoard
from routine_audit.core.clock import to_iso
from routine_audit.core.errors import AuthorizationError, InvalidTransitionError, PersistenceError, ValidationError
from routine_audit.core.models import AssignmentStatus, Frequency
from routine_audit.core.passwords import verify_password

from .conftest import FAST_ROUNDS, FIXED_NOW, seed_user

YES = lambda _: True  # noqa: E731
NO = lambda _: False  # noqa: E731


def _board(gateway, session) -> AdminBoard:
    return AdminBoard(gateway, session, tz=ZoneInfo("UTC"), fetch_limit=100, bcrypt_rounds=FAST_ROUNDS)


@pytest_asyncio.fixture
async def admin(gateway, session):
    row = seed_user(gateway, email="boss@example.com", user_type="admin", name="Boss")
    await session.login("boss@example.com", "secret-pw")
    return row


@pytest.fixture()
def staff(gateway):
    role = gateway.seed("roles", name="Cleaner")
    alice = seed_user(gateway, email="alice@example.com", name="Alice", role_id=role["id"])
    bob = seed_user(gateway, email="bob@example.com", name="Bob", role_id=role["id"])
    task = gateway.seed("task_definitions", title="Mop floor", subtasks=[])
    return {"role": role, "alice": alice, "bob": bob, "task": task}


def _seed_assignment(gateway, user_id, task_id, *, at=FIXED_NOW, **kw):
    return gateway.seed(
        "assignments",
        task_id=task_id,
        user_id=user_id,
        assigned_by="admin",
        assigned_at=to_iso(at),
        status=kw.pop("status", "pending"),
        submitted=kw.pop("submitted", False),
        **kw,
    )


@pytest.mark.asyncio
async def test_refresh_loads_every_collection(gateway, session, admin, staff) -> None:
    _seed_assignment(gateway, staff["alice"]["id"], staff["task"]["id"])
    board = _board(gateway, session)

    await board.refresh()

    assert [r.name for r in board.roles] == ["Cleaner"]
    assert [u.name for u in board.users] == ["Alice", "Bob", "Boss"]
    assert board.users[0].role.name == "Cleaner"
    assert [t.title for t in board.tasks] == ["Mop floor"]
    assert board.assignments[0].user.name == "Alice"
    assert board.assignments[0].task.title == "Mop floor"
    assert board.loading is False


@pytest.mark.asyncio
async def test_partial_refresh_failure_keeps_cached_collection(gateway, session, admin, staff, caplog) -> None:
    board = _board(gateway, session)
    await board.refresh()
    gateway.seed("roles", name="Cook")
    gateway.seed("task_definitions", title="Peel potatoes", subtasks=[])
    gateway.fail_reads.add("roles")

    await board.refresh()

    assert [r.name for r in board.roles] == ["Cleaner"]
    assert len(board.tasks) == 2
    assert "Admin fetch of roles failed" in caplog.text


@pytest.mark.asyncio
async def test_employee_cannot_refresh_admin_board(gateway, session) -> None:
    seed_user(gateway, email="emp@example.com")
    await session.login("emp@example.com", "secret-pw")

    with pytest.raises(AuthorizationError):
        await _board(gateway, session).refresh()


@pytest.mark.asyncio
async def test_audit_filters_combine_with_and(gateway, session, admin, staff) -> None:
    alice, bob, task = staff["alice"]["id"], staff["bob"]["id"], staff["task"]["id"]
    yesterday = FIXED_NOW - timedelta(days=1)
    a_today = _seed_assignment(gateway, alice, task)
    _seed_assignment(gateway, alice, task, at=yesterday)
    _seed_assignment(gateway, bob, task)
    board = _board(gateway, session)
    await board.refresh()

    assert len(board.audit()) == 3
    assert len(board.audit(user_id=alice)) == 2
    assert len(board.audit(on_date=FIXED_NOW.date())) == 2
    assert [a.id for a in board.audit(on_date=FIXED_NOW.date(), user_id=alice)] == [a_today["id"]]
    assert board.audit(on_date=date(2020, 1, 1)) == []


@pytest.mark.asyncio
async def test_flag_deficiency_reopens_done_assignment(gateway, session, admin, staff) -> None:
    row = _seed_assignment(gateway, staff["alice"]["id"], staff["task"]["id"], status="done", submitted=True)
    board = _board(gateway, session)
    await board.refresh()

    updated = await board.flag_deficiency(row["id"], "streaks left")

    assert updated.status == AssignmentStatus.DEFICIENT
    stored = gateway.tables["assignments"][row["id"]]
    assert stored["status"] == "deficient"
    assert stored["submitted"] is False
    assert stored["admin_notes"] == "streaks left"


@pytest.mark.asyncio
async def test_flag_deficiency_refuses_non_done(gateway, session, admin, staff) -> None:
    row = _seed_assignment(gateway, staff["alice"]["id"], staff["task"]["id"])
    board = _board(gateway, session)
    await board.refresh()

    with pytest.raises(InvalidTransitionError):
        await board.flag_deficiency(row["id"], "not even started")
    assert gateway.writes == []


@pytest.mark.asyncio
async def test_flag_deficiency_rolls_back_on_failure(gateway, session, admin, staff) -> None:
    row = _seed_assignment(gateway, staff["alice"]["id"], staff["task"]["id"], status="done", submitted=True)
    board = _board(gateway, session)
    await board.refresh()
    before = list(board.assignments)
    gateway.fail_writes.add("assignments")

    with pytest.raises(PersistenceError):
        await board.flag_deficiency(row["id"], "streaks left")

    assert board.assignments == before


@pytest.mark.asyncio
async def test_delete_assignment_needs_confirmation(gateway, session, admin, staff) -> None:
    row = _seed_assignment(gateway, staff["alice"]["id"], staff["task"]["id"])
    board = _board(gateway, session)
    await board.refresh()

    assert await board.delete_assignment(row["id"], confirm=NO) is False
    assert gateway.writes == []

    assert await board.delete_assignment(row["id"], confirm=YES) is True
    assert board.assignments == []
    assert row["id"] not in gateway.tables["assignments"]


@pytest.mark.asyncio
async def test_create_user_validates_and_hashes(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()

    with pytest.raises(ValidationError):
        await board.create_user(name="Carol", email="carol@example.com", password="pw-123456")  # no role
    with pytest.raises(ValidationError):
        await board.create_user(
            name="Alias", email="ALICE@example.com", password="pw-123456", role_id=staff["role"]["id"]
        )

    carol = await board.create_user(
        name="Carol", email=" Carol@Example.com ", password="pw-123456", role_id=staff["role"]["id"]
    )

    stored = gateway.tables["users"][carol.id]
    assert stored["email"] == "carol@example.com"
    assert stored["password_hash"] != "pw-123456"
    assert verify_password("pw-123456", stored["password_hash"])
    assert carol in board.users


@pytest.mark.asyncio
async def test_admin_accounts_carry_no_role(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()

    other = await board.create_user(
        name="Deputy", email="deputy@example.com", password="pw-123456", user_type="admin", role_id=staff["role"]["id"]
    )

    assert other.is_admin
    assert gateway.tables["users"][other.id]["role_id"] is None


@pytest.mark.asyncio
async def test_update_user_rehashes_only_when_password_given(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()
    alice_id = staff["alice"]["id"]
    old_hash = gateway.tables["users"][alice_id]["password_hash"]

    await board.update_user(alice_id, name="Alice B", email="alice@example.com")
    assert gateway.tables["users"][alice_id]["password_hash"] == old_hash

    await board.update_user(alice_id, name="Alice B", email="alice@example.com", password="new-secret")
    assert verify_password("new-secret", gateway.tables["users"][alice_id]["password_hash"])

    with pytest.raises(ValidationError):
        await board.update_user(alice_id, name="Alice B", email="bob@example.com")


@pytest.mark.asyncio
async def test_toggle_disabled(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()

    with pytest.raises(ValidationError):
        await board.toggle_disabled(admin["id"])

    bob = await board.toggle_disabled(staff["bob"]["id"])
    assert bob.disabled is True
    assert gateway.tables["users"][bob.id]["disabled"] is True

    bob = await board.toggle_disabled(staff["bob"]["id"])
    assert bob.disabled is False


@pytest.mark.asyncio
async def test_task_definition_subtasks(gateway, session, admin) -> None:
    board = _board(gateway, session)
    await board.refresh()

    task = await board.create_task("Close shop", "end of day")
    sub = await board.add_subtask(task.id, "Lock door")
    await board.add_subtask(task.id, "Alarm on")

    assert [s.title for s in board.tasks[0].subtasks] == ["Lock door", "Alarm on"]
    assert gateway.tables["task_definitions"][task.id]["created_by"] == admin["id"]

    assert await board.remove_subtask(task.id, sub.id, confirm=YES) is True
    assert [s["title"] for s in gateway.tables["task_definitions"][task.id]["subtasks"]] == ["Alarm on"]

    with pytest.raises(ValidationError):
        await board.create_task("   ")


@pytest.mark.asyncio
async def test_assign_one_off_with_due_date(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()

    n = await board.assign([staff["task"]["id"]], staff["alice"]["id"], due_date=date(2026, 10, 20))

    assert n == 1
    (row,) = gateway.tables["assignments"].values()
    assert row["due_date"] == "2026-10-20"
    assert row["status"] == "pending"
    assert row["assigned_by"] == admin["id"]


@pytest.mark.asyncio
async def test_assign_routine_skips_existing(gateway, session, admin, staff) -> None:
    second = gateway.seed("task_definitions", title="Empty bins", subtasks=[])
    board = _board(gateway, session)
    await board.refresh()

    assert await board.assign([staff["task"]["id"]], staff["alice"]["id"], routine=True) == 1
    await board.refresh()
    n = await board.assign([staff["task"]["id"], second["id"]], staff["alice"]["id"], routine=True)

    assert n == 1
    assert sorted(r["task_id"] for r in gateway.tables["routines"].values()) == sorted(
        [staff["task"]["id"], second["id"]]
    )
    assert {r["frequency"] for r in gateway.tables["routines"].values()} == {Frequency.DAILY.value}


@pytest.mark.asyncio
async def test_assign_refuses_admins_and_disabled(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()
    await board.toggle_disabled(staff["bob"]["id"])

    with pytest.raises(ValidationError):
        await board.assign([staff["task"]["id"]], admin["id"])
    with pytest.raises(ValidationError):
        await board.assign([staff["task"]["id"]], staff["bob"]["id"])
    with pytest.raises(ValidationError):
        await board.assign([], staff["alice"]["id"])


@pytest.mark.asyncio
async def test_reports_follow_assignments(gateway, session, admin, staff) -> None:
    alice, task = staff["alice"]["id"], staff["task"]["id"]
    for status in ("done", "done", "done", "deficient"):
        _seed_assignment(gateway, alice, task, status=status, admin_notes="redo" if status == "deficient" else None)
    board = _board(gateway, session)
    await board.refresh()

    perf = {p.name: p for p in board.performance()}
    assert perf["Alice"].completion_rate == 75
    assert perf["Bob"].completion_rate == 0
    assert "Boss" not in perf

    summary = board.summary()
    assert (summary.total, summary.done, summary.deficient) == (4, 3, 1)
    assert [d.reason for d in board.deficiency_register()] == ["redo"]


@pytest.mark.asyncio
async def test_change_notification_refetches_everything(gateway, session, admin, staff) -> None:
    board = _board(gateway, session)
    await board.refresh()
    board.start()

    await gateway.insert("roles", [{"name": "Cook"}])
    await board.wait_idle()

    assert sorted(r.name for r in board.roles) == ["Cleaner", "Cook"]
    board.stop()
    assert gateway.listeners == []


@pytest.mark.asyncio
async def test_deletes_leave_dependent_rows_alone(gateway, session, admin, staff) -> None:
    alice, task = staff["alice"]["id"], staff["task"]["id"]
    row = _seed_assignment(gateway, alice, task)
    routine = gateway.seed("routines", task_id=task, user_id=alice, created_by=admin["id"], frequency="daily")
    board = _board(gateway, session)
    await board.refresh()

    assert await board.delete_routine(routine["id"], confirm=NO) is False
    assert await board.delete_routine(routine["id"], confirm=YES) is True
    assert await board.delete_task(task, confirm=YES) is True
    assert await board.delete_role(staff["role"]["id"], confirm=YES) is True

    assert row["id"] in gateway.tables["assignments"]
    assert gateway.tables["users"][alice]["role_id"] == staff["role"]["id"]
    assert board.routines == [] and board.tasks == [] and board.roles == []

    await board.refresh()
    (a,) = board.assignments
    assert a.task is None
    assert next(u for u in board.users if u.id == alice).role is None


@pytest.mark.asyncio
async def test_refresh_during_pending_delete_keeps_row_removed(gateway, session, admin, staff, monkeypatch) -> None:
    row = _seed_assignment(gateway, staff["alice"]["id"], staff["task"]["id"])
    board = _board(gateway, session)
    await board.refresh()

    release = asyncio.Event()
    real_delete = gateway.delete

    async def slow_delete(table, row_id):
        await release.wait()
        await real_delete(table, row_id)

    monkeypatch.setattr(gateway, "delete", slow_delete)
    pending = asyncio.create_task(board.delete_assignment(row["id"], confirm=YES))
    await asyncio.sleep(0)
    assert board.assignments == []

    # the store still holds the row while the delete is in flight
    await board.refresh()
    assert board.assignments == []

    release.set()
    assert await pending is True
    await board.refresh()
    assert board.assignments == []
    assert row["id"] not in gateway.tables["assignments"]
