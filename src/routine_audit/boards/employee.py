# src/routine_audit/boards/employee.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..assignments import lifecycle
from ..assignments.materializer import RoutineMaterializer
from ..assignments.optimistic import OptimisticCommand, WriteFence, replace_item
from ..core.clock import now_iso
from ..core.errors import AuditError, PersistenceError, ValidationError
from ..core.models import Assignment, AssignmentStatus
from ..core.ports import ChangeEvent, PersistenceGateway, Unsubscribe
from ..core.session import Session

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


class EmployeeBoard:
    """
    The signed-in employee's view: today's assignments plus draft notes.

    Reads go through the routine materializer; writes are optimistic commands.
    While started, any change to the employee's assignments or routines triggers a
    full refetch.
    """

    def __init__(self, gateway: PersistenceGateway, session: Session, materializer: RoutineMaterializer) -> None:
        self._gateway = gateway
        self._session = session
        self._materializer = materializer
        self.assignments: list[Assignment] = []
        self.drafts: dict[str, str] = {}
        self.loading = True
        self._unsubscribers: list[Unsubscribe] = []
        self._refreshes: set[asyncio.Task[None]] = set()
        self._fence = WriteFence()

    # ---- reads ----

    async def refresh(self) -> list[Assignment]:
        user = self._session.require_employee()
        mark = self._fence.mark()
        try:
            result = await self._materializer.load_for_user(user.id)
        except PersistenceError:
            logger.warning("Refresh failed for user_id=%s; keeping %d cached item(s)", user.id, len(self.assignments))
            raise
        finally:
            self.loading = False
        if self._fence.superseded(mark):
            logger.debug("Refresh overlapped a local write; keeping the local assignments")
            return self.assignments
        self.assignments = result.assignments
        return self.assignments

    def get(self, assignment_id: str) -> Assignment:
        for a in self.assignments:
            if a.id == assignment_id:
                return a
        raise ValidationError(f"Assignment {assignment_id} not found.")

    def notes_for(self, assignment_id: str) -> str:
        if assignment_id in self.drafts:
            return self.drafts[assignment_id]
        return self.get(assignment_id).employee_notes or ""

    # ---- writes ----

    def set_note(self, assignment_id: str, text: str) -> None:
        if lifecycle.is_locked(self.get(assignment_id)):
            raise ValidationError("This task was already submitted; notes are read-only.")
        self.drafts[assignment_id] = text

    def _editable(self, assignment_id: str) -> Assignment:
        self._session.require_employee()
        current = self.get(assignment_id)
        if current.is_placeholder:
            raise ValidationError("This task is still being created. Refresh and try again.")
        return current

    def _set_assignments(self, items: list[Assignment]) -> None:
        self.assignments = items

    async def _apply(self, label: str, updated: Assignment, values: dict[str, Any]) -> None:
        cmd = OptimisticCommand(
            label=label,
            read=lambda: self.assignments,
            write=self._set_assignments,
            tentative=replace_item(self.assignments, updated),
            effect=lambda: self._gateway.update("assignments", updated.id, values),
            fence=self._fence,
        )
        await cmd.execute()

    async def mark_done(self, assignment_id: str) -> Assignment:
        current = self._editable(assignment_id)
        notes = lifecycle.resolve_notes(self.drafts.get(assignment_id), current.employee_notes)
        now = now_iso()
        updated = lifecycle.mark_done(current, notes=notes, now=now)

        await self._apply(
            "Mark done",
            updated,
            {
                "status": AssignmentStatus.DONE.value,
                "employee_notes": notes,
                "submitted": True,
                "completed_at": now,
            },
        )
        self.drafts.pop(assignment_id, None)
        logger.info("Assignment %s marked done", assignment_id)
        return updated

    async def reject(self, assignment_id: str, *, confirm: Confirm) -> Assignment | None:
        """Reject with the note as reason. Returns None when the confirmation is declined."""
        current = self._editable(assignment_id)
        reason = self.drafts.get(assignment_id) or current.employee_notes
        updated = lifecycle.reject(current, reason=reason)

        if not confirm("Are you sure you want to reject this task?"):
            return None

        await self._apply(
            "Reject",
            updated,
            {
                "status": AssignmentStatus.REJECTED.value,
                "employee_notes": updated.employee_notes,
                "submitted": True,
            },
        )
        self.drafts.pop(assignment_id, None)
        logger.info("Assignment %s rejected", assignment_id)
        return updated

    # ---- change notifications ----

    def start(self) -> None:
        user = self._session.require_employee()
        self.stop()
        for table in ("assignments", "routines"):
            self._unsubscribers.append(self._gateway.subscribe(table, self._on_change, eq={"user_id": user.id}))

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
            logger.warning("Background refresh failed; cached assignments kept")

    async def wait_idle(self) -> None:
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)
