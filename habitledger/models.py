"""Entities and enumerated value sets for the habit engine.

Rows coming out of :mod:`habitledger.store` are plain dicts; the
``from_row`` constructors turn them into the dataclasses below.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

HABIT_TYPES = ("ritual", "goal")
CATEGORIES = ("health", "work", "learning", "mindfulness", "social")
TIMES_OF_DAY = ("morning", "afternoon", "evening", "anytime")
PRIORITIES = ("high", "medium", "low")
MOODS = ("great", "good", "neutral", "tired", "stressed")

# Link types. Only prerequisite and synergy carry automated effects.
LINK_TYPES = ("prerequisite", "chain", "synergy", "conflict")

# Sort rank used to break ties between arrears on the same date
PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


@dataclass
class Habit:
    """A recurring ritual or finite goal governed by a weekday recurrence set."""

    id: int
    user_id: str
    title: str
    frequency: frozenset[int]
    category: str = "health"
    time_of_day: str = "anytime"
    type: str = "ritual"
    description: str | None = None
    goal_duration: int | None = None
    goal_progress: int = 0
    priority: str = "medium"
    order: int = 0
    archived: bool = False
    created_at: str | None = None
    # Local calendar day of creation, a YYYY-MM-DD key like every other date
    created_on: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Habit:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            frequency=frozenset(json.loads(row["frequency"])),
            category=row["category"],
            time_of_day=row["time_of_day"],
            type=row["type"],
            description=row["description"],
            goal_duration=row["goal_duration"],
            goal_progress=row["goal_progress"] or 0,
            priority=row["priority"] or "medium",
            order=row["sort_order"] or 0,
            archived=bool(row["archived"]),
            created_at=row["created_at"],
            created_on=row["created_on"],
        )


@dataclass(frozen=True)
class HabitLink:
    """Directed edge between two habits."""

    id: int
    source_habit_id: int
    target_habit_id: int
    type: str
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> HabitLink:
        return cls(
            id=row["id"],
            source_habit_id=row["source_habit_id"],
            target_habit_id=row["target_habit_id"],
            type=row["type"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )


@dataclass
class CompletionRecord:
    habit_id: int
    date: str
    points: int = 0
    note: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> CompletionRecord:
        return cls(
            habit_id=row["habit_id"],
            date=row["date"],
            points=row["points"],
            note=row["note"],
        )


@dataclass
class SkipRecord:
    habit_id: int
    date: str
    reason: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SkipRecord:
        return cls(habit_id=row["habit_id"], date=row["date"], reason=row["reason"])


@dataclass
class GamificationProfile:
    """Per-user level and points. Level thresholds are applied by the store."""

    user_id: str
    level: int
    current_points: int
    next_level_points: int

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> GamificationProfile:
        return cls(
            user_id=row["user_id"],
            level=row["level"],
            current_points=row["current_points"],
            next_level_points=row["next_level_points"],
        )


@dataclass
class Reflection:
    user_id: str
    date: str
    mood: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class ArrearEntry:
    """A scheduled-but-unfulfilled obligation on a past date. Never persisted."""

    habit_id: int
    title: str
    date: str
    priority: str


@dataclass
class HabitView:
    """A habit augmented with its same-day state for display."""

    habit: Habit
    links: list[HabitLink] = field(default_factory=list)
    completed_today: bool = False
    skipped_today: bool = False
    is_locked: bool = False


@dataclass
class ToggleResult:
    """Outcome of a completion toggle.

    Carries everything a caller needs to reconcile an optimistic local
    update: the resulting ledger state, the delta actually applied, and
    the profile after the increment.
    """

    habit_id: int
    date: str
    completed: bool
    xp_delta: int = 0
    synergy_bonus: bool = False
    applied: bool = False
    profile: GamificationProfile | None = None
    level_up: bool = False
