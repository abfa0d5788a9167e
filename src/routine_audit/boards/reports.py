# src/routine_audit/boards/reports.py

"""Derived statistics over the assignment collection. Pure, recomputed on every call."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ..core.models import Assignment, AssignmentStatus, User


@dataclass(slots=True, frozen=True)
class EmployeePerformance:
    user_id: str
    name: str
    role_name: str | None
    total: int
    completed: int
    deficient: int
    pending: int
    rejected: int
    completion_rate: int


@dataclass(slots=True, frozen=True)
class Summary:
    total: int
    done: int
    deficient: int


@dataclass(slots=True, frozen=True)
class DeficiencyRecord:
    assignment: Assignment
    reason: str


def completion_rate(completed: int, total: int) -> int:
    """Percentage rounded half-up; 0 when there is nothing assigned."""
    if total <= 0:
        return 0
    pct = Decimal(100 * completed) / Decimal(total)
    return int(pct.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def performance_report(assignments: Sequence[Assignment], users: Sequence[User]) -> list[EmployeePerformance]:
    out: list[EmployeePerformance] = []
    for user in users:
        if user.is_admin:
            continue
        mine = [a for a in assignments if a.user_id == user.id]
        counts = {status: 0 for status in AssignmentStatus}
        for a in mine:
            counts[a.status] += 1
        total = len(mine)
        completed = counts[AssignmentStatus.DONE]
        out.append(
            EmployeePerformance(
                user_id=user.id,
                name=user.name,
                role_name=user.role.name if user.role else None,
                total=total,
                completed=completed,
                deficient=counts[AssignmentStatus.DEFICIENT],
                pending=counts[AssignmentStatus.PENDING],
                rejected=counts[AssignmentStatus.REJECTED],
                completion_rate=completion_rate(completed, total),
            )
        )
    return out


def summary(assignments: Sequence[Assignment]) -> Summary:
    return Summary(
        total=len(assignments),
        done=sum(1 for a in assignments if a.status == AssignmentStatus.DONE),
        deficient=sum(1 for a in assignments if a.status == AssignmentStatus.DEFICIENT),
    )


def deficiency_register(assignments: Sequence[Assignment]) -> list[DeficiencyRecord]:
    return [
        DeficiencyRecord(assignment=a, reason=a.admin_notes or "")
        for a in assignments
        if a.status == AssignmentStatus.DEFICIENT
    ]
