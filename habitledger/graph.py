"""Same-day dependency graph between habits.

Edges are evaluated one hop deep and are never transitively closed: in a
chain A -> B -> C, completing A does nothing for C. Locks are recomputed
per day from that day's completions, so an unlock never carries over.

- ``prerequisite``: target is locked on day D unless the source has a
  completion on D.
- ``synergy``: stored directed, evaluated symmetrically for the reward bonus.
- ``chain`` / ``conflict``: informational only.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from habitledger.errors import ValidationError
from habitledger.models import LINK_TYPES, Habit, HabitLink
from habitledger.recurrence import date_key


def validate_link_type(link_type: str) -> str:
    if link_type not in LINK_TYPES:
        raise ValidationError(f"Invalid link type '{link_type}'. Must be one of {LINK_TYPES}")
    return link_type


def validate_link(source_habit_id: int, target_habit_id: int, link_type: str) -> None:
    """Reject unknown link types and self-links."""
    validate_link_type(link_type)
    if source_habit_id == target_habit_id:
        raise ValidationError(f"Habit {source_habit_id} cannot link to itself")


class DependencyGraph:
    """Index over a user's habit links.

    Parameters
    ----------
    links:
        All links for one user.
    archived_ids:
        Habits that are archived. Prerequisite edges from an archived
        source are ignored so archiving never strands a target behind a
        lock that can no longer be lifted.
    """

    def __init__(
        self,
        links: Iterable[HabitLink],
        archived_ids: Iterable[int] = (),
    ) -> None:
        self._links = list(links)
        self._archived = frozenset(archived_ids)
        self._by_habit: dict[int, list[HabitLink]] = defaultdict(list)
        self._prereqs: dict[int, set[int]] = defaultdict(set)
        self._synergy: dict[int, set[int]] = defaultdict(set)

        for link in self._links:
            self._by_habit[link.source_habit_id].append(link)
            if link.target_habit_id != link.source_habit_id:
                self._by_habit[link.target_habit_id].append(link)
            if link.type == "prerequisite":
                self._prereqs[link.target_habit_id].add(link.source_habit_id)
            elif link.type == "synergy":
                self._synergy[link.source_habit_id].add(link.target_habit_id)
                self._synergy[link.target_habit_id].add(link.source_habit_id)

    def __len__(self) -> int:
        return len(self._links)

    def links_for(self, habit_id: int) -> list[HabitLink]:
        """All links where *habit_id* is either endpoint."""
        return list(self._by_habit.get(habit_id, []))

    def prerequisites_of(self, habit_id: int) -> set[int]:
        """Direct prerequisite sources of *habit_id*, excluding archived ones."""
        return {
            src for src in self._prereqs.get(habit_id, set())
            if src not in self._archived
        }

    def synergy_neighbors(self, habit_id: int) -> set[int]:
        """Habits sharing a synergy edge with *habit_id*, in either direction."""
        return set(self._synergy.get(habit_id, set()))

    def lock_status(
        self,
        habit: Habit,
        day: str,
        todays_completions: Iterable[int],
    ) -> bool:
        """Return True if *habit* is locked on *day*.

        Locked iff at least one prerequisite edge targets the habit and its
        source is missing from *todays_completions* (the ids completed on
        *day*). Archived habits are never locked.
        """
        date_key(day)
        if habit.archived:
            return False
        prereqs = self.prerequisites_of(habit.id)
        if not prereqs:
            return False
        done = set(todays_completions)
        return not prereqs <= done
