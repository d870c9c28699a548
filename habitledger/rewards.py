"""Reward scoring for completions.

This module only computes deltas. The store applies them as a single
atomic increment, and level thresholds are handled there too; callers
observe level changes from the ``before``/``after`` profile pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from habitledger.graph import DependencyGraph
from habitledger.models import GamificationProfile

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardDelta:
    points: int
    synergy_bonus: bool = False


class GamificationLedger:
    """Computes signed point deltas for completion credit and reversal.

    Parameters
    ----------
    config:
        habitledger config dict (``rewards`` section).
    db:
        LedgerDB used for direct profile reads and increments.
    """

    def __init__(self, config: dict[str, Any], db: Any) -> None:
        rewards = config["rewards"]
        self._base = rewards["base"]
        self._bonus = rewards["synergy_bonus"]
        self._reversal = rewards["reversal"]
        self._db = db

    @property
    def base(self) -> int:
        return self._base

    def credit_completion(
        self,
        habit_id: int,
        graph: DependencyGraph,
        completed_ids: Iterable[int],
    ) -> RewardDelta:
        """Reward for completing *habit_id* given the ids already completed that day.

        Base reward, plus one synergy bonus if any direct synergy neighbour
        is already in *completed_ids*. Extra neighbours do not stack.
        """
        done = set(completed_ids)
        neighbours = graph.synergy_neighbors(habit_id)
        if neighbours & done:
            log.debug("Synergy bonus for habit %d via %s", habit_id, sorted(neighbours & done))
            return RewardDelta(self._base + self._bonus, synergy_bonus=True)
        return RewardDelta(self._base)

    def debit_completion(self, record: dict[str, Any]) -> int:
        """Signed reversal for a deleted completion row.

        ``stored`` mode reverses exactly what the row was credited;
        ``flat`` mode reverses the base amount whatever was awarded.
        """
        if self._reversal == "stored":
            return -int(record["points"])
        return -self._base

    def apply(
        self, user_id: str, delta: int,
    ) -> tuple[GamificationProfile, GamificationProfile]:
        """Apply an ad-hoc signed delta outside a ledger write."""
        before, after = self._db.increment_points(user_id, delta)
        return GamificationProfile.from_row(before), GamificationProfile.from_row(after)

    def profile(self, user_id: str) -> GamificationProfile:
        return GamificationProfile.from_row(self._db.get_profile(user_id))
