"""Weekday recurrence and canonical date keys.

All scheduling works on calendar-day identity (``YYYY-MM-DD`` keys),
never on instants. Converting wall-clock time to a date key is the
caller's job, done once upstream.

Weekdays are numbered 0 = Sunday through 6 = Saturday.
"""

from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Iterable, Iterator

from habitledger.errors import ValidationError
from habitledger.models import Habit

DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

SUNDAY, MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY = range(7)
WEEKDAYS = frozenset(range(7))
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def parse_date_key(key: str | date) -> date:
    """Parse a ``YYYY-MM-DD`` key. Dates pass through unchanged."""
    if isinstance(key, date):
        return key
    if not isinstance(key, str) or not DATE_KEY_RE.match(key):
        raise ValidationError(f"Invalid date key {key!r}, expected YYYY-MM-DD")
    try:
        return date.fromisoformat(key)
    except ValueError as exc:
        raise ValidationError(f"Invalid date key {key!r}: {exc}") from exc


def date_key(day: date | str) -> str:
    """Canonical key for *day* (validates string input)."""
    return parse_date_key(day).isoformat()


def weekday(day: date) -> int:
    """Weekday number with 0 = Sunday."""
    return day.isoweekday() % 7


def validate_frequency(days: Iterable[int]) -> frozenset[int]:
    """Return *days* as a frozenset, rejecting anything outside 0-6."""
    result = set()
    for d in days:
        if isinstance(d, bool) or not isinstance(d, int) or d not in WEEKDAYS:
            raise ValidationError(f"Invalid weekday {d!r} in frequency; must be 0-6")
        result.add(d)
    if not result:
        raise ValidationError("Frequency must name at least one weekday")
    return frozenset(result)


def parse_frequency(text: str) -> frozenset[int]:
    """Parse a comma list like ``"mon,tue,fri"`` or ``"1,2,5"`` or ``"daily"``."""
    text = text.strip().lower()
    if text in ("daily", "all"):
        return WEEKDAYS
    if text == "weekdays":
        return frozenset({MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY})
    if text == "weekends":
        return frozenset({SATURDAY, SUNDAY})
    days: list[int] = []
    for part in text.split(","):
        part = part.strip()
        if part in WEEKDAY_NAMES:
            days.append(WEEKDAY_NAMES.index(part))
        elif part.isdigit():
            days.append(int(part))
        else:
            raise ValidationError(f"Unknown weekday {part!r} in frequency {text!r}")
    return validate_frequency(days)


def is_scheduled(habit: Habit, day: date | str) -> bool:
    """True if *habit* is due on *day*: weekday in its frequency and not archived."""
    if habit.archived:
        return False
    return weekday(parse_date_key(day)) in habit.frequency


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each day in the half-open range ``[start, end)``."""
    day = start
    while day < end:
        yield day
        day += timedelta(days=1)
