# src/routine_audit/boards/admin.py

"""
Administrator board.

Holds the five collections (roles, users, task definitions, assignments, routines),
refetched together on load and after any change notification. On top of that:

- audit: date/employee filter over assignments, deficiency flag (done -> deficient), delete
- staff: roles and user accounts
- task definitions and their subtasks
- assigning tasks one-off or as routines
- reports (see reports.py)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import date
from typing import Any
from zoneinfo import ZoneInfo

from ..assignments import lifecycle
from ..assignments.optimistic import OptimisticCommand, WriteFence, remove_item, replace_item
from ..core.clock import local_date, parse_iso
from ..core.errors import AuditError, ValidationError
from ..core.models import (
    Assignment,
    AssignmentStatus,
    Frequency,
    Role,
    Routine,
    SubTask,
    TaskDefinition,
    User,
    UserType,
)
from ..core.passwords import DEFAULT_ROUNDS, hash_password
from ..core.ports import TABLES, ChangeEvent, PersistenceGateway, Unsubscribe
from ..core.session import Session
from . import reports

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


def filter_assignments(
        assignments: Iterable[Assignment],
        *,
        tz: ZoneInfo,
        on_date: date | None = None,
        user_id: str | None = None,
) -> list[Assignment]:
    """Audit filter. Both filters optional, combined with AND; the date is organization-local."""
    out: list[Assignment] = []
    for a in assignments:
        if user_id and a.user_id != user_id:
            continue
        if on_date is not None:
            try:
                if local_date(parse_iso(a.assigned_at), tz) != on_date:
                    continue
            except ValueError:
                continue
        out.append(a)
    return out


def _find(items: Sequence[Any], item_id: str, label: str) -> Any:
    for item in items:
        if item.id == item_id:
            return item
    raise ValidationError(f"{label} {item_id} not found.")


def _required(value: str | None, message: str) -> str:
    if not value or not value.strip():
        raise ValidationError(message)
    return value.strip()


class AdminBoard:
    def __init__(
            self,
            gateway: PersistenceGateway,
            session: Session,
            *,
            tz: ZoneInfo,
            fetch_limit: int = 100,
            bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self._gateway = gateway
        self._session = session
        self._tz = tz
        self._limit = fetch_limit
        self._rounds = bcrypt_rounds

        self.roles: list[Role] = []
        self.users: list[User] = []
        self.tasks: list[TaskDefinition] = []
        self.assignments: list[Assignment] = []
        self.routines: list[Routine] = []
        self.loading = True

        self._unsubscribers: list[Unsubscribe] = []
        self._refreshes: set[asyncio.Task[None]] = set()
        self._fence = WriteFence()

    # ---- reads ----

    async def refresh(self) -> None:
        """
        Fetch all collections concurrently.

        A failed sub-fetch is logged and leaves that collection as it was; the others
        still update. Results are dropped when a local write overlapped the fetch;
        that write's own change notification schedules the next refresh.
        """
        self._session.require_admin()
        g = self._gateway
        mark = self._fence.mark()
        results = await asyncio.gather(
            g.select("roles", order_by="name"),
            g.select("users", order_by="name", joins=("role",)),
            g.select("task_definitions", order_by="created_at", descending=True),
            g.select(
                "assignments",
                order_by="assigned_at",
                descending=True,
                limit=self._limit,
                joins=("task", "user"),
            ),
            g.select(
                "routines",
                order_by="created_at",
                descending=True,
                limit=self._limit,
                joins=("task", "user"),
            ),
            return_exceptions=True,
        )
        if self._fence.superseded(mark):
            logger.debug("Admin refresh overlapped a local write; results dropped")
            return

        targets = (
            ("roles", Role.from_row),
            ("users", User.from_row),
            ("tasks", TaskDefinition.from_row),
            ("assignments", Assignment.from_row),
            ("routines", Routine.from_row),
        )
        failed = 0
        for (attr, convert), res in zip(targets, results):
            if isinstance(res, asyncio.CancelledError):
                raise res
            if isinstance(res, BaseException):
                failed += 1
                logger.error("Admin fetch of %s failed; keeping cached data", attr, exc_info=res)
                continue
            setattr(self, attr, [convert(r) for r in res])
        self.loading = False
        if failed:
            logger.warning("Admin refresh finished with %d failed fetch(es)", failed)

    # ---- audit ----

    def audit(self, *, on_date: date | None = None, user_id: str | None = None) -> list[Assignment]:
        return filter_assignments(self.assignments, tz=self._tz, on_date=on_date, user_id=user_id)

    def _set_assignments(self, items: list[Assignment]) -> None:
        self.assignments = items

    async def flag_deficiency(self, assignment_id: str, note: str) -> Assignment:
        self._session.require_admin()
        current = _find(self.assignments, assignment_id, "Assignment")
        updated = lifecycle.flag_deficient(current, note=note)

        cmd = OptimisticCommand(
            label="Flag deficiency",
            read=lambda: self.assignments,
            write=self._set_assignments,
            tentative=replace_item(self.assignments, updated),
            effect=lambda: self._gateway.update(
                "assignments",
                assignment_id,
                {"status": AssignmentStatus.DEFICIENT.value, "admin_notes": note, "submitted": False},
            ),
            fence=self._fence,
        )
        await cmd.execute()
        logger.info("Assignment %s flagged deficient", assignment_id)
        return updated

    async def delete_assignment(self, assignment_id: str, *, confirm: Confirm) -> bool:
        self._session.require_admin()
        _find(self.assignments, assignment_id, "Assignment")
        if not confirm("Delete this record? This cannot be undone."):
            return False

        cmd = OptimisticCommand(
            label="Delete assignment",
            read=lambda: self.assignments,
            write=self._set_assignments,
            tentative=remove_item(self.assignments, assignment_id),
            effect=lambda: self._gateway.delete("assignments", assignment_id),
            fence=self._fence,
        )
        await cmd.execute()
        logger.info("Assignment %s deleted", assignment_id)
        return True

    # ---- staff ----

    async def create_role(self, name: str) -> Role:
        self._session.require_admin()
        name = _required(name, "Please enter a role name.")
        with self._fence.writing():
            (row,) = await self._gateway.insert("roles", [{"name": name}])
            role = Role.from_row(row)
            self.roles = sorted([*self.roles, role], key=lambda r: r.name)
        logger.info("Role created id=%s name=%s", role.id, role.name)
        return role

    async def delete_role(self, role_id: str, *, confirm: Confirm) -> bool:
        """Users keep a dangling role_id; nothing cascades."""
        self._session.require_admin()
        _find(self.roles, role_id, "Role")
        if not confirm("Delete this role? Employees linked to it keep a missing role."):
            return False
        with self._fence.writing():
            await self._gateway.delete("roles", role_id)
            self.roles = remove_item(self.roles, role_id)
        return True

    async def _email_taken(self, email: str, *, except_id: str | None = None) -> bool:
        rows = await self._gateway.select("users", eq={"email": email})
        return any(str(r["id"]) != except_id for r in rows)

    async def create_user(
            self,
            *,
            name: str,
            email: str,
            password: str,
            user_type: UserType | str = UserType.USER,
            role_id: str | None = None,
    ) -> User:
        self._session.require_admin()
        name = _required(name, "Please fill in all fields.")
        email = _required(email, "Please fill in all fields.").lower()
        if not password:
            raise ValidationError("Please fill in all fields.")
        try:
            kind = UserType(user_type)
        except ValueError as e:
            raise ValidationError(f"Unknown user type {user_type!r}.") from e
        if kind == UserType.USER and not role_id:
            raise ValidationError("Please choose a job role.")
        if await self._email_taken(email):
            raise ValidationError("An account with this email already exists.")

        row_values = {
            "name": name,
            "email": email,
            "password_hash": hash_password(password, rounds=self._rounds),
            "user_type": kind.value,
            "role_id": role_id if kind == UserType.USER else None,
            "disabled": False,
        }
        with self._fence.writing():
            (row,) = await self._gateway.insert("users", [row_values])
            user = User.from_row(row)
            self.users = sorted([*self.users, user], key=lambda u: u.name)
        logger.info("User created id=%s type=%s", user.id, user.user_type.value)
        return user

    async def update_user(self, user_id: str, *, name: str, email: str, password: str | None = None) -> User:
        """Name and email are required; the password is re-hashed only when given."""
        self._session.require_admin()
        current: User = _find(self.users, user_id, "User")
        name = _required(name, "Please fill in all fields.")
        email = _required(email, "Please fill in all fields.").lower()
        if email != current.email and await self._email_taken(email, except_id=user_id):
            raise ValidationError("An account with this email already exists.")

        values: dict[str, Any] = {"name": name, "email": email}
        if password:
            values["password_hash"] = hash_password(password, rounds=self._rounds)
        with self._fence.writing():
            await self._gateway.update("users", user_id, values)
            updated = replace(current, name=name, email=email, password_hash=values.get("password_hash", current.password_hash))
            self.users = replace_item(self.users, updated)
        return updated

    async def toggle_disabled(self, user_id: str) -> User:
        """Soft delete: disabled accounts cannot sign in, their history stays valid."""
        admin = self._session.require_admin()
        current: User = _find(self.users, user_id, "User")
        if current.id == admin.id:
            raise ValidationError("You cannot disable your own account.")
        with self._fence.writing():
            await self._gateway.update("users", user_id, {"disabled": not current.disabled})
            updated = replace(current, disabled=not current.disabled)
            self.users = replace_item(self.users, updated)
        logger.info("User %s %s", user_id, "disabled" if updated.disabled else "enabled")
        return updated

    # ---- task definitions ----

    async def create_task(self, title: str, description: str | None = None) -> TaskDefinition:
        admin = self._session.require_admin()
        title = _required(title, "Please enter a task title.")
        with self._fence.writing():
            (row,) = await self._gateway.insert(
                "task_definitions",
                [{"title": title, "description": (description or "").strip() or None, "subtasks": [], "created_by": admin.id}],
            )
            task = TaskDefinition.from_row(row)
            self.tasks = [task, *self.tasks]
        return task

    async def _save_subtasks(self, task: TaskDefinition, subtasks: tuple[SubTask, ...]) -> TaskDefinition:
        with self._fence.writing():
            await self._gateway.update("task_definitions", task.id, {"subtasks": [s.to_dict() for s in subtasks]})
            updated = replace(task, subtasks=subtasks)
            self.tasks = replace_item(self.tasks, updated)
        return updated

    async def add_subtask(self, task_id: str, title: str, description: str | None = None) -> SubTask:
        self._session.require_admin()
        task: TaskDefinition = _find(self.tasks, task_id, "Task")
        sub = SubTask(
            id=uuid.uuid4().hex,
            title=_required(title, "Please enter a subtask title."),
            description=(description or "").strip() or None,
        )
        await self._save_subtasks(task, (*task.subtasks, sub))
        return sub

    async def remove_subtask(self, task_id: str, subtask_id: str, *, confirm: Confirm) -> bool:
        self._session.require_admin()
        task: TaskDefinition = _find(self.tasks, task_id, "Task")
        _find(task.subtasks, subtask_id, "Subtask")
        if not confirm("Delete this subtask?"):
            return False
        await self._save_subtasks(task, tuple(s for s in task.subtasks if s.id != subtask_id))
        return True

    async def delete_task(self, task_id: str, *, confirm: Confirm) -> bool:
        """Assignments and routines pointing at the task are left as they are."""
        self._session.require_admin()
        _find(self.tasks, task_id, "Task")
        if not confirm("Delete this task? Linked assignments will lose their details."):
            return False
        with self._fence.writing():
            await self._gateway.delete("task_definitions", task_id)
            self.tasks = remove_item(self.tasks, task_id)
        return True

    # ---- assigning ----

    async def assign(
            self,
            task_ids: Sequence[str],
            user_id: str,
            *,
            routine: bool = False,
            due_date: date | None = None,
            frequency: Frequency = Frequency.DAILY,
    ) -> int:
        """
        Assign tasks to one employee, one-off (optional due date) or as routines.

        Returns the number of rows written.
        """
        admin = self._session.require_admin()
        ids = list(dict.fromkeys(t for t in task_ids if t))
        if not ids:
            raise ValidationError("Please choose at least one task.")
        if not user_id:
            raise ValidationError("Please choose an employee.")
        target: User = _find(self.users, user_id, "User")
        if target.is_admin or target.disabled:
            raise ValidationError("Tasks can only be assigned to active employees.")
        for task_id in ids:
            _find(self.tasks, task_id, "Task")

        if routine:
            existing = {r.task_id for r in self.routines if r.user_id == user_id and r.frequency == frequency}
            fresh = [t for t in ids if t not in existing]
            if len(fresh) < len(ids):
                logger.info("Skipping %d routine(s) that already exist for user_id=%s", len(ids) - len(fresh), user_id)
            rows = [
                {"task_id": t, "user_id": user_id, "created_by": admin.id, "frequency": Frequency(frequency).value}
                for t in fresh
            ]
            if rows:
                await self._gateway.insert("routines", rows)
        else:
            rows = [
                {
                    "task_id": t,
                    "user_id": user_id,
                    "assigned_by": admin.id,
                    "due_date": due_date.isoformat() if due_date else None,
                    "status": AssignmentStatus.PENDING.value,
                    "submitted": False,
                }
                for t in ids
            ]
            await self._gateway.insert("assignments", rows)

        logger.info(
            "Assigned %d task(s) to user_id=%s as %s", len(rows), user_id, "routine" if routine else "one-off"
        )
        return len(rows)

    async def delete_routine(self, routine_id: str, *, confirm: Confirm) -> bool:
        """Stops future materialization; assignments already created stay."""
        self._session.require_admin()
        _find(self.routines, routine_id, "Routine")
        if not confirm("Stop this routine?"):
            return False
        with self._fence.writing():
            await self._gateway.delete("routines", routine_id)
            self.routines = remove_item(self.routines, routine_id)
        return True

    # ---- reports ----

    def performance(self) -> list[reports.EmployeePerformance]:
        return reports.performance_report(self.assignments, self.users)

    def summary(self) -> reports.Summary:
        return reports.summary(self.assignments)

    def deficiency_register(self) -> list[reports.DeficiencyRecord]:
        return reports.deficiency_register(self.assignments)

    # ---- change notifications ----

    def start(self) -> None:
        self._session.require_admin()
        self.stop()
        for table in TABLES:
            self._unsubscribers.append(self._gateway.subscribe(table, self._on_change))

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("Change on %s (%s); refetching", event.table, event.kind.value)
        task = asyncio.get_running_loop().create_task(self._background_refresh())
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    async def _background_refresh(self) -> None:
        if not self._session.is_authenticated:
            return
        try:
            await self.refresh()
        except AuditError:
            logger.warning("Background admin refresh failed")

    async def wait_idle(self) -> None:
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)
