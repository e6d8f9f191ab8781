"""Calendar-day helpers shared by the cache, resolver and analysis engine.

Every day-based computation goes through these functions so that a given
wall-clock day maps to exactly one key in the configured local time zone.
Naive datetimes are interpreted as already being local.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo


def to_local(ts: datetime, tz: tzinfo) -> datetime:
    """Return ``ts`` expressed in ``tz``."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def local_day(ts: datetime | date, tz: tzinfo) -> date:
    """Return the local calendar date for a timestamp (dates pass through)."""
    if isinstance(ts, datetime):
        return to_local(ts, tz).date()
    return ts


def day_key(ts: datetime | date, tz: tzinfo) -> str:
    """Canonical cache key for the calendar day containing ``ts``.

    Args:
        ts: Timestamp or date.
        tz: Local time zone.

    Returns:
        ISO date string, e.g. ``"2026-02-23"``.
    """
    return local_day(ts, tz).isoformat()


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Local midnight to the next local midnight for ``day``.

    Built from wall-clock dates so days containing a DST switch are 23 or
    25 hours long rather than shifted.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def weekday_number(ts: datetime, tz: tzinfo) -> int:
    """Day of week as 1–7 with Sunday = 1."""
    # isoweekday(): Monday=1 … Sunday=7
    return to_local(ts, tz).isoweekday() % 7 + 1


def days_in_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates from ``start`` to ``end``."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]
