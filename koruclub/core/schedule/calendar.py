"""Calendar rules — which days are sprint events, and when is the next one.

All functions work on naive local datetimes in the single configured
timezone. Nothing here touches the clock unless asked (``now_local``), so
every rule is deterministic and total.

The "nth weekday" rules are day-of-month range checks: the 1st occurrence
is any matching weekday on days 1-7, the 2nd on days 8-14, and so on. This
matches the cadence the group has always used and is kept as-is even where
it differs from a strict ordinal-weekday reading.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from loguru import logger

from koruclub.core.schedule.types import (
    JOB_SPECS,
    JobType,
    NextOccurrence,
    job_spec,
)

LOOKBACK_DAYS = 14

_ORDINALS = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th"}
_WEEKDAY_NAMES = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]


def now_local(timezone: str) -> datetime:
    """Current wall-clock time in ``timezone``, as a naive datetime."""
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


# ════════════════════════════════════════════════════════════
# PREDICATES
# ════════════════════════════════════════════════════════════


def is_nth_weekday(day: date | datetime, weekday: int, occurrences: Iterable[int]) -> bool:
    """True if ``day`` is ``weekday`` and falls in one of the occurrence weeks.

    Parameters
    ----------
    day : date | datetime
        Day to test (time part ignored).
    weekday : int
        ``date.weekday()`` value, Monday = 0.
    occurrences : Iterable[int]
        1-based week-of-month numbers, e.g. ``{1, 3}`` → days 1-7 and 15-21.
    """
    d = _as_date(day)
    if d.weekday() != weekday:
        return False
    return any(7 * (n - 1) + 1 <= d.day <= 7 * n for n in occurrences)


def is_last_day_of_month(day: date | datetime) -> bool:
    return (_as_date(day) + timedelta(days=1)).day == 1


def is_occurrence(job_type: JobType, day: date | datetime) -> bool:
    """True if ``day`` is a real occurrence of ``job_type``."""
    spec = job_spec(job_type)
    if spec.weekday is None:
        return is_last_day_of_month(day)
    return is_nth_weekday(day, spec.weekday, spec.occurrences)


def describe_skip(job_type: JobType, day: date | datetime) -> str:
    """Human-readable reason why ``day`` is not an occurrence."""
    spec = job_spec(job_type)
    d = _as_date(day)
    if spec.weekday is None:
        return f"Not the last day of the month (day {d.day})"
    ordinals = " or ".join(_ORDINALS[n] for n in sorted(spec.occurrences))
    return f"Not {ordinals} {_WEEKDAY_NAMES[spec.weekday]} (day {d.day})"


# ════════════════════════════════════════════════════════════
# SEARCH
# ════════════════════════════════════════════════════════════


def at_job_time(job_type: JobType, day: date | datetime) -> datetime:
    """``day`` combined with the job's configured time-of-day."""
    spec = job_spec(job_type)
    return datetime.combine(_as_date(day), time(spec.hour, spec.minute))


def next_occurrence(
    job_type: JobType, start: datetime, now: datetime | None = None
) -> datetime:
    """Next scheduled instant of ``job_type`` on or after ``start``'s day.

    If ``start``'s day qualifies but ``now`` (defaults to ``start``) is the
    same day and already at or past the job's time, that slot is gone and
    the search begins the following day.

    Scanning is bounded by the job's horizon. Exhausting it means the rules
    are broken; the result then degrades to ``start``'s day at job time and
    a warning is logged.
    """
    spec = job_spec(job_type)
    now = now or start
    candidate = start.date()

    if is_occurrence(job_type, candidate) and candidate == now.date():
        if now.time() >= time(spec.hour, spec.minute):
            candidate += timedelta(days=1)

    for _ in range(spec.horizon_days):
        if is_occurrence(job_type, candidate):
            return at_job_time(job_type, candidate)
        candidate += timedelta(days=1)

    logger.warning(
        f"No {spec.label} found within {spec.horizon_days} days of {start:%Y-%m-%d}"
    )
    return at_job_time(job_type, start)


def most_recent_occurrence(job_type: JobType, before: datetime) -> datetime | None:
    """Latest occurrence strictly before ``before``'s day, within 14 days."""
    candidate = before.date()
    for _ in range(LOOKBACK_DAYS):
        candidate -= timedelta(days=1)
        if is_occurrence(job_type, candidate):
            return at_job_time(job_type, candidate)
    return None


def all_next_occurrences(now: datetime) -> list[NextOccurrence]:
    """One upcoming occurrence per job type, soonest first."""
    upcoming = [
        NextOccurrence(
            job_type=job_type,
            date=next_occurrence(job_type, now, now),
            label=spec.label,
        )
        for job_type, spec in JOB_SPECS.items()
    ]
    upcoming.sort(key=lambda o: o.date)
    return upcoming


def qualifying_days(job_type: JobType, start: datetime, end: datetime) -> Iterator[date]:
    """Occurrence days from ``start``'s midnight while midnight < ``end``."""
    day = start.date()
    while datetime.combine(day, time()) < end:
        if is_occurrence(job_type, day):
            yield day
        day += timedelta(days=1)


def format_when(value: datetime) -> str:
    """Display format used in chat, e.g. ``Mon 2 Feb 2026, 09:00``."""
    return f"{value:%a} {value.day} {value:%b %Y, %H:%M}"
