# src/routine_audit/assignments/materializer.py

"""
Routine materializer.

On every employee load:
- fetch (concurrently) the employee's recent assignments and all of their routines,
- a routine is "missing" when no assignment with its task_id exists inside the routine's
  current cadence window (organization-local day / ISO week / month),
- missing routines become placeholder assignments right away (id "temp-<routine id>"),
  shown before any write completes,
- the real inserts go out as one detached batch; failures are only logged.

There is no "already materialized" flag: dedupe is by task_id inside the window, so
re-running against data that already holds the window's row yields nothing to insert.
The next refresh replaces placeholders with the stored rows.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from ..core.clock import day_start, local_date, month_start, parse_iso, to_iso, utc_now, week_start
from ..core.models import Assignment, AssignmentStatus, Frequency, Routine
from ..core.ports import PersistenceGateway

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "temp-"


def window_start(frequency: Frequency, now: datetime, tz: ZoneInfo) -> datetime:
    today = local_date(now, tz)
    if frequency == Frequency.WEEKLY:
        return week_start(today, tz)
    if frequency == Frequency.MONTHLY:
        return month_start(today, tz)
    return day_start(today, tz)


def fetch_horizon(now: datetime, tz: ZoneInfo) -> datetime:
    """Earliest window start any cadence can have right now."""
    return min(window_start(f, now, tz) for f in Frequency)


def _assigned_times(assignments: Iterable[Assignment]) -> dict[str, list[datetime]]:
    out: dict[str, list[datetime]] = defaultdict(list)
    for a in assignments:
        try:
            out[a.task_id].append(parse_iso(a.assigned_at))
        except ValueError:
            logger.warning("Assignment %s has an unreadable assigned_at=%r", a.id, a.assigned_at)
    return out


def compute_missing(
        assignments: Sequence[Assignment],
        routines: Sequence[Routine],
        *,
        now: datetime,
        tz: ZoneInfo,
) -> list[Routine]:
    """
    Routines that still need an assignment in their current window.

    Two routines for the same task count once: the invariant is one instance per
    (task, user) per window.
    """
    existing = _assigned_times(assignments)
    missing: list[Routine] = []
    seen_tasks: set[str] = set()
    for routine in routines:
        if routine.task_id in seen_tasks:
            continue
        start = window_start(routine.frequency, now, tz)
        if any(ts >= start for ts in existing.get(routine.task_id, ())):
            continue
        seen_tasks.add(routine.task_id)
        missing.append(routine)
    return missing


def build_placeholder(routine: Routine, *, user_id: str, now: datetime) -> Assignment:
    return Assignment(
        id=f"{PLACEHOLDER_PREFIX}{routine.id}",
        task_id=routine.task_id,
        user_id=user_id,
        assigned_by=routine.created_by,
        assigned_at=to_iso(now),
        status=AssignmentStatus.PENDING,
        submitted=False,
        task=routine.task,
    )


def visible_assignments(
        assignments: Sequence[Assignment],
        routines: Sequence[Routine],
        *,
        now: datetime,
        tz: ZoneInfo,
) -> list[Assignment]:
    """
    Today's assignments, plus the current-window instance of weekly/monthly routines
    (those may have been created earlier in the week or month and still be open).
    """
    today = day_start(local_date(now, tz), tz)
    windows: dict[str, datetime] = {}
    for r in routines:
        if r.frequency != Frequency.DAILY:
            start = window_start(r.frequency, now, tz)
            windows[r.task_id] = min(start, windows.get(r.task_id, start))

    out: list[Assignment] = []
    for a in assignments:
        try:
            ts = parse_iso(a.assigned_at)
        except ValueError:
            continue
        if ts >= today or (a.task_id in windows and ts >= windows[a.task_id]):
            out.append(a)
    return out


@dataclass(slots=True, frozen=True)
class MaterializationResult:
    assignments: list[Assignment]
    missing: list[Routine]
    submitted: list[Routine]


class RoutineMaterializer:
    def __init__(
            self,
            gateway: PersistenceGateway,
            *,
            tz: ZoneInfo,
            clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._gateway = gateway
        self._tz = tz
        self._clock = clock
        # (user_id, task_id, window start) of batches still being written
        self._inflight: set[tuple[str, str, str]] = set()
        self._background: set[asyncio.Task[None]] = set()

    async def load_for_user(self, user_id: str) -> MaterializationResult:
        """
        Fetch, compute the missing set, return placeholders + stored rows.

        Read failures propagate (PersistenceError): computing "missing" from partial data
        would create duplicates.
        """
        now = self._clock()
        horizon = to_iso(fetch_horizon(now, self._tz))

        assignment_rows, routine_rows = await asyncio.gather(
            self._gateway.select(
                "assignments",
                eq={"user_id": user_id},
                gte={"assigned_at": horizon},
                order_by="assigned_at",
                descending=True,
                joins=("task",),
            ),
            self._gateway.select("routines", eq={"user_id": user_id}, joins=("task",)),
        )
        stored = [Assignment.from_row(r) for r in assignment_rows]
        routines = [Routine.from_row(r) for r in routine_rows]

        missing = compute_missing(stored, routines, now=now, tz=self._tz)
        placeholders = [build_placeholder(r, user_id=user_id, now=now) for r in missing]

        submitted = self._submit(user_id, missing, now) if missing else []
        if missing:
            logger.info(
                "Materializing %d routine(s) for user_id=%s (%d new insert(s))",
                len(missing),
                user_id,
                len(submitted),
            )

        visible = visible_assignments(stored, routines, now=now, tz=self._tz)
        return MaterializationResult(assignments=placeholders + visible, missing=missing, submitted=submitted)

    def _submit(self, user_id: str, missing: Sequence[Routine], now: datetime) -> list[Routine]:
        batch: list[Routine] = []
        keys: list[tuple[str, str, str]] = []
        for routine in missing:
            key = (user_id, routine.task_id, to_iso(window_start(routine.frequency, now, self._tz)))
            if key in self._inflight:
                continue
            batch.append(routine)
            keys.append(key)

        if not batch:
            return []

        self._inflight.update(keys)
        rows = [
            {
                "task_id": r.task_id,
                "user_id": user_id,
                "assigned_by": r.created_by,
                "assigned_at": to_iso(now),
                "status": AssignmentStatus.PENDING.value,
                "submitted": False,
            }
            for r in batch
        ]
        task = asyncio.create_task(self._insert_batch(rows, keys))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return batch

    async def _insert_batch(self, rows: list[dict], keys: list[tuple[str, str, str]]) -> None:
        try:
            await self._gateway.insert("assignments", rows)
            logger.debug("Routine batch stored: %d assignment(s)", len(rows))
        except Exception:
            # Fire-and-forget: the next refresh recomputes the missing set and retries.
            logger.exception("Routine materialization insert failed (%d row(s))", len(rows))
        finally:
            self._inflight.difference_update(keys)

    async def drain(self) -> None:
        """Wait for detached inserts (shutdown and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
