# src/routine_audit/core/models.py

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class UserType(StrEnum):
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def from_db(cls, raw: str | None) -> UserType:
        if not raw:
            return cls.USER
        try:
            return cls(raw)
        except ValueError:
            return cls.USER


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def from_db(cls, raw: str | None) -> Frequency:
        if not raw:
            return cls.DAILY
        try:
            return cls(raw)
        except ValueError:
            return cls.DAILY


class AssignmentStatus(StrEnum):
    """
    Assignment lifecycle status.

    The machine is cyclic: deficient goes back to done/rejected through the employee,
    done goes to deficient through the admin audit.
    """

    PENDING = "pending"
    DONE = "done"
    REJECTED = "rejected"
    DEFICIENT = "deficient"

    @classmethod
    def from_db(cls, raw: str | None) -> AssignmentStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


def _opt_str(v: Any) -> str | None:
    return None if v is None else str(v)


@dataclass(frozen=True, slots=True)
class Role:
    id: str
    name: str
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Row) -> Role:
        return cls(id=str(row["id"]), name=str(row.get("name") or ""), created_at=row.get("created_at"))


@dataclass(frozen=True, slots=True)
class User:
    id: str
    email: str
    name: str
    user_type: UserType
    disabled: bool = False
    role_id: str | None = None
    password_hash: str = field(default="", repr=False)
    created_at: str | None = None
    role: Role | None = None

    @property
    def is_admin(self) -> bool:
        return self.user_type == UserType.ADMIN

    @classmethod
    def from_row(cls, row: Row) -> User:
        role_row = row.get("role")
        return cls(
            id=str(row["id"]),
            email=str(row.get("email") or ""),
            name=str(row.get("name") or ""),
            user_type=UserType.from_db(row.get("user_type")),
            disabled=bool(row.get("disabled")),
            role_id=_opt_str(row.get("role_id")),
            password_hash=str(row.get("password_hash") or ""),
            created_at=row.get("created_at"),
            role=Role.from_row(role_row) if isinstance(role_row, dict) else None,
        )

    def to_public_dict(self) -> Row:
        """Identity payload safe to keep on disk (no password hash)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "user_type": self.user_type.value,
            "disabled": self.disabled,
            "role_id": self.role_id,
            "created_at": self.created_at,
            "role": (
                {"id": self.role.id, "name": self.role.name, "created_at": self.role.created_at}
                if self.role is not None
                else None
            ),
        }


@dataclass(frozen=True, slots=True)
class SubTask:
    id: str
    title: str
    description: str | None = None

    def to_dict(self) -> Row:
        return {"id": self.id, "title": self.title, "description": self.description}


def subtasks_from_json(raw: Any) -> tuple[SubTask, ...]:
    if raw is None or raw == "":
        return ()
    items = raw
    if isinstance(raw, str):
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable subtasks payload; treating as empty.")
            return ()
    if not isinstance(items, list):
        return ()
    out: list[SubTask] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        out.append(
            SubTask(
                id=str(item["id"]),
                title=str(item.get("title") or ""),
                description=_opt_str(item.get("description")),
            )
        )
    return tuple(out)


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    id: str
    title: str
    description: str | None = None
    subtasks: tuple[SubTask, ...] = ()
    created_by: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Row) -> TaskDefinition:
        return cls(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            description=_opt_str(row.get("description")),
            subtasks=subtasks_from_json(row.get("subtasks")),
            created_by=_opt_str(row.get("created_by")),
            created_at=row.get("created_at"),
        )


def _joined_task(row: Row) -> TaskDefinition | None:
    t = row.get("task")
    return TaskDefinition.from_row(t) if isinstance(t, dict) else None


def _joined_user(row: Row) -> User | None:
    u = row.get("user")
    return User.from_row(u) if isinstance(u, dict) else None


@dataclass(frozen=True, slots=True)
class Routine:
    id: str
    task_id: str
    user_id: str
    created_by: str | None
    frequency: Frequency = Frequency.DAILY
    created_at: str | None = None
    task: TaskDefinition | None = None
    user: User | None = None

    @classmethod
    def from_row(cls, row: Row) -> Routine:
        return cls(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            user_id=str(row["user_id"]),
            created_by=_opt_str(row.get("created_by")),
            frequency=Frequency.from_db(row.get("frequency")),
            created_at=row.get("created_at"),
            task=_joined_task(row),
            user=_joined_user(row),
        )


@dataclass(frozen=True, slots=True)
class Assignment:
    id: str
    task_id: str
    user_id: str
    assigned_by: str | None
    assigned_at: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    submitted: bool = False
    due_date: str | None = None
    employee_notes: str | None = None
    admin_notes: str | None = None
    completed_at: str | None = None
    task: TaskDefinition | None = None
    user: User | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.id.startswith("temp-")

    @classmethod
    def from_row(cls, row: Row) -> Assignment:
        return cls(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            user_id=str(row["user_id"]),
            assigned_by=_opt_str(row.get("assigned_by")),
            assigned_at=str(row.get("assigned_at") or ""),
            status=AssignmentStatus.from_db(row.get("status")),
            submitted=bool(row.get("submitted")),
            due_date=_opt_str(row.get("due_date")),
            employee_notes=_opt_str(row.get("employee_notes")),
            admin_notes=_opt_str(row.get("admin_notes")),
            completed_at=_opt_str(row.get("completed_at")),
            task=_joined_task(row),
            user=_joined_user(row),
        )
