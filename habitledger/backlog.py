"""Backlog reconciliation: reconstruct missed obligations on demand.

Nothing ever persists a "missed" event. Arrears are derived by rescanning
a trailing window of days against the completion and skip ledgers, at a
cost of O(habits x window_days) per call. Today is always excluded; only
strictly past days can be in arrears.

The scan is read-only and may run alongside ledger writes. A write that
lands mid-scan may or may not be reflected.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Iterable

from habitledger.models import (
    PRIORITY_RANK,
    ArrearEntry,
    CompletionRecord,
    Habit,
    SkipRecord,
)
from habitledger.recurrence import is_scheduled, iter_days, parse_date_key

log = logging.getLogger(__name__)


def reconcile(
    habits: Iterable[Habit],
    completions: Iterable[CompletionRecord],
    skips: Iterable[SkipRecord],
    window_start: date | str,
    today: date | str,
    window_end: date | str | None = None,
) -> list[ArrearEntry]:
    """Return arrears for *habits*, most recent first.

    For each non-archived habit, every day from
    ``max(window_start, created_on)`` up to but excluding
    ``min(today, window_end)`` that is scheduled and has neither a
    completion nor a skip produces one :class:`ArrearEntry`.

    Entries on the same date are ordered by priority (high first), then
    title.
    """
    start = parse_date_key(window_start)
    end = parse_date_key(today)
    if window_end is not None:
        end = min(end, parse_date_key(window_end))

    satisfied = {(c.habit_id, c.date) for c in completions}
    satisfied.update((s.habit_id, s.date) for s in skips)

    arrears: list[ArrearEntry] = []
    for habit in habits:
        if habit.archived:
            continue
        habit_start = start
        if habit.created_on:
            created = parse_date_key(habit.created_on)
            if created > habit_start:
                habit_start = created
        for day in iter_days(habit_start, end):
            key = day.isoformat()
            if not is_scheduled(habit, day):
                continue
            if (habit.id, key) in satisfied:
                continue
            arrears.append(ArrearEntry(
                habit_id=habit.id,
                title=habit.title,
                date=key,
                priority=habit.priority,
            ))

    arrears.sort(key=lambda a: (PRIORITY_RANK.get(a.priority, len(PRIORITY_RANK)), a.title))
    arrears.sort(key=lambda a: a.date, reverse=True)
    return arrears


class BacklogReconciler:
    """Loads a user's habits and ledgers and runs :func:`reconcile`.

    Parameters
    ----------
    config:
        habitledger config dict (``arrears.window_days``).
    db:
        LedgerDB instance.
    """

    def __init__(self, config: dict[str, Any], db: Any) -> None:
        self._window_days = config["arrears"]["window_days"]
        self._db = db

    def list_arrears(self, user_id: str, today: date | str) -> list[ArrearEntry]:
        """Arrears over the trailing window ending the day before *today*."""
        end = parse_date_key(today)
        start = end - timedelta(days=self._window_days)
        return self.reconcile_window(user_id, start, end)

    def reconcile_window(
        self,
        user_id: str,
        window_start: date | str,
        today: date | str,
        window_end: date | str | None = None,
    ) -> list[ArrearEntry]:
        start = parse_date_key(window_start)
        end = parse_date_key(today)
        if window_end is not None:
            end = min(end, parse_date_key(window_end))

        if end <= start:
            return []
        habits = [Habit.from_row(r) for r in self._db.list_habits(user_id)]
        # Ledger queries are inclusive on both ends; end itself is never scanned.
        last = (end - timedelta(days=1)).isoformat()
        completions = [
            CompletionRecord.from_row(r)
            for r in self._db.list_completions(user_id, start.isoformat(), last)
        ]
        skips = [
            SkipRecord.from_row(r)
            for r in self._db.list_skips(user_id, start.isoformat(), last)
        ]
        arrears = reconcile(habits, completions, skips, start, end)
        log.debug(
            "Reconciled %d habits over %s..%s: %d arrears",
            len(habits), start, last, len(arrears),
        )
        return arrears
