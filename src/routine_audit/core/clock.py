# src/routine_audit/core/clock.py

"""
Timestamps and organization calendar windows.

All timestamps are stored as UTC ISO-8601 strings with microsecond precision, so that
plain string comparison in the store matches time ordering. Calendar boundaries
("today", "this week", "this month") are computed in the organization timezone and then
converted back to UTC for querying.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        raise ValueError("naive datetime; attach a timezone first")
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(raw: str) -> datetime:
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        # Rows written by older clients carry no offset; they were UTC.
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def now_iso() -> str:
    return to_iso(utc_now())


def org_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name!r}") from e


def local_date(dt: datetime, tz: ZoneInfo) -> date:
    return dt.astimezone(tz).date()


def day_start(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def week_start(day: date, tz: ZoneInfo) -> datetime:
    return day_start(day - timedelta(days=day.weekday()), tz)


def month_start(day: date, tz: ZoneInfo) -> datetime:
    return day_start(day.replace(day=1), tz)


def parse_day(raw: str) -> date:
    """Parse a YYYY-MM-DD date typed by a user."""
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid date {raw!r}; expected YYYY-MM-DD") from e
