"""Completion ledger: at most one completion per (habit, date).

Toggling is idempotent with respect to the desired state. Toggle-on twice
leaves one record and credits once; toggle-off on an empty key is a
no-op. The ledger write, the point increment and the skip cleanup are
one store transaction, so a failure leaves neither half applied. The
synergy check reads the day's completions inside that same transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from habitledger.errors import ConflictIgnored, NotFoundError
from habitledger.graph import DependencyGraph
from habitledger.models import CompletionRecord, GamificationProfile, Habit, HabitLink, ToggleResult
from habitledger.recurrence import date_key
from habitledger.rewards import GamificationLedger, RewardDelta

log = logging.getLogger(__name__)


def build_graph(db: Any, user_id: str) -> DependencyGraph:
    """Load the dependency graph for *user_id* from the store."""
    links = [HabitLink.from_row(r) for r in db.list_links(user_id)]
    archived = [h["id"] for h in db.list_habits(user_id) if h["archived"]]
    return DependencyGraph(links, archived_ids=archived)


class CompletionLedger:
    """Toggle and query completion records.

    Parameters
    ----------
    db:
        LedgerDB instance.
    rewards:
        GamificationLedger used to price credits and reversals.
    """

    def __init__(self, db: Any, rewards: GamificationLedger) -> None:
        self._db = db
        self._rewards = rewards

    def _habit(self, habit_id: int) -> Habit:
        row = self._db.get_habit(habit_id)
        if row is None:
            raise NotFoundError(f"Habit {habit_id} not found")
        return Habit.from_row(row)

    def toggle_completion(
        self,
        habit_id: int,
        day: str,
        desired_state: bool,
        note: str | None = None,
    ) -> ToggleResult:
        """Bring the ledger for (habit_id, day) to *desired_state*.

        Returns a :class:`ToggleResult` with the applied delta and the
        resulting profile. ``applied`` is False when the ledger already
        matched *desired_state*; no points move in that case.

        *note* is only stored when a new completion is created. Use
        :meth:`edit_note` to change the note on an existing completion.
        """
        key = date_key(day)
        habit = self._habit(habit_id)
        if desired_state:
            return self._complete(habit, key, note)
        return self._uncomplete(habit, key)

    def _complete(self, habit: Habit, key: str, note: str | None) -> ToggleResult:
        graph = build_graph(self._db, habit.user_id)

        def price(done: set[int]) -> RewardDelta:
            return self._rewards.credit_completion(habit.id, graph, done)

        try:
            reward, before, after = self._db.record_completion(
                habit.user_id, habit.id, key, price, note,
            )
        except ConflictIgnored:
            # Already completed, possibly by a concurrent toggle-on that was credited.
            log.debug("Habit %d already completed on %s", habit.id, key)
            return self._noop(habit, key, completed=True)

        log.info(
            "Completed habit %d on %s (+%d%s)",
            habit.id, key, reward.points, ", synergy" if reward.synergy_bonus else "",
        )
        return ToggleResult(
            habit_id=habit.id,
            date=key,
            completed=True,
            xp_delta=reward.points,
            synergy_bonus=reward.synergy_bonus,
            applied=True,
            profile=GamificationProfile.from_row(after),
            level_up=after["level"] > before["level"],
        )

    def _uncomplete(self, habit: Habit, key: str) -> ToggleResult:
        outcome = self._db.remove_completion(
            habit.user_id, habit.id, key, self._rewards.debit_completion,
        )
        if outcome is None:
            log.debug("Habit %d has no completion on %s", habit.id, key)
            return self._noop(habit, key, completed=False)

        delta, before, after = outcome
        log.info("Uncompleted habit %d on %s (%d)", habit.id, key, delta)
        return ToggleResult(
            habit_id=habit.id,
            date=key,
            completed=False,
            xp_delta=delta,
            applied=True,
            profile=GamificationProfile.from_row(after),
            level_up=after["level"] > before["level"],
        )

    def _noop(self, habit: Habit, key: str, completed: bool) -> ToggleResult:
        return ToggleResult(
            habit_id=habit.id,
            date=key,
            completed=completed,
            profile=self._rewards.profile(habit.user_id),
        )

    def edit_note(self, habit_id: int, day: str, note: str | None) -> CompletionRecord:
        """Replace the note on an existing completion without toggling it."""
        key = date_key(day)
        self._habit(habit_id)
        if not self._db.set_completion_note(habit_id, key, note):
            raise NotFoundError(f"Habit {habit_id} has no completion on {key}")
        return CompletionRecord.from_row(self._db.get_completion(habit_id, key))

    def get(self, habit_id: int, day: str) -> CompletionRecord | None:
        row = self._db.get_completion(habit_id, date_key(day))
        return CompletionRecord.from_row(row) if row else None

    def completed_on(self, user_id: str, day: str) -> set[int]:
        """Ids of habits completed on *day*."""
        key = date_key(day)
        return {r["habit_id"] for r in self._db.list_completions(user_id, key, key)}

    def list_completions(self, user_id: str, start: str, end: str) -> list[CompletionRecord]:
        rows = self._db.list_completions(user_id, date_key(start), date_key(end))
        return [CompletionRecord.from_row(r) for r in rows]
