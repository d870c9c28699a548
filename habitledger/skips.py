"""Skip registry: excused obligations.

A skip satisfies a scheduled day without earning a reward and keeps it
out of the arrears. A later completion on the same (habit, date)
supersedes it; that deletion happens inside the completion write.
"""

from __future__ import annotations

import logging
from typing import Any

from habitledger.errors import ConflictIgnored
from habitledger.models import SkipRecord
from habitledger.recurrence import date_key

log = logging.getLogger(__name__)


class SkipRegistry:
    def __init__(self, db: Any) -> None:
        self._db = db

    def record_skip(
        self, user_id: str, habit_id: int, day: str, reason: str | None = None,
    ) -> bool:
        """Insert a skip. Returns False if one already existed (not an error)."""
        key = date_key(day)
        try:
            self._db.insert_skip(user_id, habit_id, key, reason)
        except ConflictIgnored:
            log.debug("Skip for habit %d on %s already recorded", habit_id, key)
            return False
        return True

    def undo_skip(self, habit_id: int, day: str) -> bool:
        return self._db.delete_skip(habit_id, date_key(day))

    def list_skips(self, user_id: str, start: str, end: str) -> list[SkipRecord]:
        rows = self._db.list_skips(user_id, date_key(start), date_key(end))
        return [SkipRecord.from_row(r) for r in rows]

    def skipped_on(self, user_id: str, day: str) -> set[int]:
        """Ids of habits skipped on *day*."""
        key = date_key(day)
        return {r["habit_id"] for r in self._db.list_skips(user_id, key, key)}
