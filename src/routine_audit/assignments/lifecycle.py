# src/routine_audit/assignments/lifecycle.py

"""
Assignment lifecycle state machine.

    pending ──done/reject (employee)──▶ done | rejected
    done ──deficiency (admin)──▶ deficient   (reopens: submitted=False)
    deficient ──done/reject (employee)──▶ done | rejected

The employee side is locked once submitted, unless the admin reopened it as deficient.
All functions are pure: they validate and return a new Assignment, or raise before
anything changes.
"""

from __future__ import annotations

from dataclasses import replace

from ..core.errors import AssignmentLockedError, InvalidTransitionError, ValidationError
from ..core.models import Assignment, AssignmentStatus


def is_locked(assignment: Assignment) -> bool:
    return assignment.submitted and assignment.status != AssignmentStatus.DEFICIENT


def resolve_notes(draft: str | None, stored: str | None) -> str:
    """Current draft, else the previously stored note, else empty."""
    return draft or stored or ""


def _ensure_editable(assignment: Assignment) -> None:
    if is_locked(assignment):
        raise AssignmentLockedError("This task was already submitted.")


def mark_done(assignment: Assignment, *, notes: str, now: str) -> Assignment:
    _ensure_editable(assignment)
    return replace(
        assignment,
        status=AssignmentStatus.DONE,
        submitted=True,
        completed_at=now,
        employee_notes=notes,
    )


def reject(assignment: Assignment, *, reason: str | None) -> Assignment:
    _ensure_editable(assignment)
    if not reason or not reason.strip():
        raise ValidationError("Please write the rejection reason in the notes.")
    return replace(
        assignment,
        status=AssignmentStatus.REJECTED,
        submitted=True,
        employee_notes=reason,
    )


def flag_deficient(assignment: Assignment, *, note: str | None) -> Assignment:
    if assignment.status != AssignmentStatus.DONE:
        raise InvalidTransitionError(
            f"Only completed tasks can be flagged deficient (status is {assignment.status.value})."
        )
    if not note or not note.strip():
        raise ValidationError("Please describe the deficiency.")
    return replace(
        assignment,
        status=AssignmentStatus.DEFICIENT,
        submitted=False,
        admin_notes=note,
    )
