"""Operations exposed to the calling layer.

:class:`HabitService` composes the recurrence resolver, dependency graph,
completion ledger, gamification ledger, skip registry and backlog
reconciler over one :class:`~habitledger.store.LedgerDB`. Every call is
a synchronous request/response; the results carry enough state for a
caller to confirm or revert an optimistic local update.

Date arguments are canonical ``YYYY-MM-DD`` keys. Where ``today`` is
optional it defaults to the local calendar date.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable

from habitledger.backlog import BacklogReconciler
from habitledger.config import default_config
from habitledger.errors import NotFoundError, ValidationError
from habitledger.graph import validate_link, validate_link_type
from habitledger.ledger import CompletionLedger, build_graph
from habitledger.models import (
    CATEGORIES,
    HABIT_TYPES,
    MOODS,
    PRIORITIES,
    TIMES_OF_DAY,
    ArrearEntry,
    CompletionRecord,
    GamificationProfile,
    Habit,
    HabitLink,
    HabitView,
    Reflection,
    SkipRecord,
    ToggleResult,
)
from habitledger.recurrence import date_key, validate_frequency
from habitledger.rewards import GamificationLedger
from habitledger.skips import SkipRegistry
from habitledger.store import LedgerDB

log = logging.getLogger(__name__)


def _check_choice(name: str, value: str, choices: tuple[str, ...]) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {name} '{value}'. Must be one of {choices}")
    return value


def _check_title(title: str | None) -> str:
    if not title or not title.strip():
        raise ValidationError("Habit title must not be empty")
    return title.strip()


def _check_order(order: Any) -> int:
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError(f"order must be an integer, got {order!r}")
    return order


def _check_goal(habit_type: str, goal_duration: int | None, goal_progress: int) -> None:
    if habit_type != "goal":
        if goal_duration is not None:
            raise ValidationError("goal_duration is only valid for goal habits")
        return
    if goal_duration is None or goal_duration < 1:
        raise ValidationError("Goal habits need a positive goal_duration")
    if goal_progress < 0 or goal_progress > goal_duration:
        raise ValidationError(
            f"goal_progress must be between 0 and goal_duration ({goal_duration}), "
            f"got {goal_progress}"
        )


def resolve_today(today: str | None) -> str:
    """Validate *today* or default to the local calendar date."""
    return date_key(today) if today is not None else date.today().isoformat()


class HabitService:
    """Facade over the habit engine for one store.

    Parameters
    ----------
    db:
        LedgerDB instance.
    config:
        habitledger config dict. Defaults to :data:`habitledger.config.DEFAULTS`.
    """

    def __init__(self, db: LedgerDB, config: dict[str, Any] | None = None) -> None:
        self._config = config if config is not None else default_config()
        self._db = db
        self.rewards = GamificationLedger(self._config, db)
        self.ledger = CompletionLedger(db, self.rewards)
        self.skips = SkipRegistry(db)
        self.backlog = BacklogReconciler(self._config, db)

    @classmethod
    def open(cls, config: dict[str, Any], db_path: Path) -> HabitService:
        return cls(LedgerDB.from_config(config, db_path), config)

    # ------------------------------------------------------------------
    # Habits
    # ------------------------------------------------------------------

    def get_habit(self, habit_id: int) -> Habit:
        row = self._db.get_habit(habit_id)
        if row is None:
            raise NotFoundError(f"Habit {habit_id} not found")
        return Habit.from_row(row)

    def create_habit(
        self,
        user_id: str,
        title: str,
        frequency: Iterable[int],
        category: str = "health",
        time_of_day: str = "anytime",
        habit_type: str = "ritual",
        description: str | None = None,
        goal_duration: int | None = None,
        goal_progress: int = 0,
        priority: str = "medium",
        order: int = 0,
        links: Iterable[tuple[int, str, dict[str, Any] | None]] = (),
        created_on: str | None = None,
    ) -> Habit:
        """Create a habit and its outgoing links.

        *links* is an iterable of ``(target_habit_id, type, metadata)``.
        *created_on* is the creation day as a date key and defaults to
        today on the same clock :func:`resolve_today` uses.
        """
        title = _check_title(title)
        days = validate_frequency(frequency)
        _check_choice("category", category, CATEGORIES)
        _check_choice("time of day", time_of_day, TIMES_OF_DAY)
        _check_choice("habit type", habit_type, HABIT_TYPES)
        _check_choice("priority", priority, PRIORITIES)
        _check_goal(habit_type, goal_duration, goal_progress)
        _check_order(order)
        created_on = resolve_today(created_on)
        links = list(links)
        for target_id, link_type, _ in links:
            validate_link_type(link_type)
            self._require_same_user(user_id, target_id)

        habit_id = self._db.create_habit(
            user_id,
            title,
            sorted(days),
            category,
            time_of_day,
            habit_type=habit_type,
            description=description,
            goal_duration=goal_duration,
            goal_progress=goal_progress,
            priority=priority,
            sort_order=order,
            created_on=created_on,
        )
        if links:
            self._db.replace_links(user_id, habit_id, links)
        log.info("Created habit %d '%s' for user %s", habit_id, title, user_id)
        return self.get_habit(habit_id)

    def update_habit(
        self,
        habit_id: int,
        links: Iterable[tuple[int, str, dict[str, Any] | None]] | None = None,
        **fields: Any,
    ) -> Habit:
        """Edit a habit. When *links* is given the outgoing link set is replaced wholesale.

        Accepted *fields*: title, description, category, time_of_day,
        frequency, priority, order, archived, goal_duration.
        """
        habit = self.get_habit(habit_id)
        updates: dict[str, Any] = {}
        for key, val in fields.items():
            if key == "frequency":
                updates["frequency"] = sorted(validate_frequency(val))
            elif key == "category":
                updates[key] = _check_choice("category", val, CATEGORIES)
            elif key == "time_of_day":
                updates[key] = _check_choice("time of day", val, TIMES_OF_DAY)
            elif key == "priority":
                updates[key] = _check_choice("priority", val, PRIORITIES)
            elif key == "order":
                updates["sort_order"] = _check_order(val)
            elif key == "goal_duration":
                _check_goal(habit.type, val, habit.goal_progress)
                updates[key] = val
            elif key == "title":
                updates[key] = _check_title(val)
            elif key in ("description", "archived"):
                updates[key] = val
            else:
                raise ValidationError(f"Field '{key}' cannot be updated")

        if links is not None:
            links = list(links)
            for target_id, link_type, _ in links:
                validate_link(habit_id, target_id, link_type)
                self._require_same_user(habit.user_id, target_id)

        self._db.update_habit(habit_id, **updates)

        if links is not None:
            self._db.replace_links(habit.user_id, habit_id, links)
            log.info("Replaced links of habit %d (%d links)", habit_id, len(links))
        return self.get_habit(habit_id)

    def archive_habit(self, habit_id: int) -> Habit:
        return self.update_habit(habit_id, archived=True)

    def update_goal_progress(self, habit_id: int, progress: int) -> Habit:
        habit = self.get_habit(habit_id)
        if habit.type != "goal":
            raise ValidationError(f"Habit {habit_id} is not a goal")
        _check_goal(habit.type, habit.goal_duration, progress)
        self._db.update_habit(habit_id, goal_progress=progress)
        return self.get_habit(habit_id)

    def list_habits(self, user_id: str, today: str | None = None) -> list[HabitView]:
        """All of a user's habits with same-day state and resolved links."""
        key = resolve_today(today)
        habits = [Habit.from_row(r) for r in self._db.list_habits(user_id)]
        graph = build_graph(self._db, user_id)
        done = self.ledger.completed_on(user_id, key)
        skipped = self.skips.skipped_on(user_id, key)
        return [
            HabitView(
                habit=h,
                links=graph.links_for(h.id),
                completed_today=h.id in done,
                skipped_today=h.id in skipped,
                is_locked=graph.lock_status(h, key, done),
            )
            for h in habits
        ]

    def lock_status(self, habit_id: int, day: str) -> bool:
        habit = self.get_habit(habit_id)
        graph = build_graph(self._db, habit.user_id)
        return graph.lock_status(habit, day, self.ledger.completed_on(habit.user_id, day))

    def _require_same_user(self, user_id: str, habit_id: int) -> None:
        target = self.get_habit(habit_id)
        if target.user_id != user_id:
            raise NotFoundError(f"Habit {habit_id} not found for user {user_id}")

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def list_links(self, user_id: str) -> list[HabitLink]:
        return [HabitLink.from_row(r) for r in self._db.list_links(user_id)]

    def create_link(
        self,
        source_habit_id: int,
        target_habit_id: int,
        link_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> HabitLink:
        validate_link(source_habit_id, target_habit_id, link_type)
        source = self.get_habit(source_habit_id)
        self._require_same_user(source.user_id, target_habit_id)
        link_id = self._db.add_link(
            source.user_id, source_habit_id, target_habit_id, link_type, metadata,
        )
        return HabitLink.from_row(self._db.get_link(link_id))

    def delete_link(self, link_id: int) -> None:
        if not self._db.delete_link(link_id):
            raise NotFoundError(f"Link {link_id} not found")

    # ------------------------------------------------------------------
    # Completions, skips, profile
    # ------------------------------------------------------------------

    def toggle_completion(
        self,
        habit_id: int,
        day: str,
        desired_state: bool,
        note: str | None = None,
    ) -> ToggleResult:
        return self.ledger.toggle_completion(habit_id, day, desired_state, note)

    def edit_note(self, habit_id: int, day: str, note: str | None) -> CompletionRecord:
        return self.ledger.edit_note(habit_id, day, note)

    def list_completions(self, user_id: str, start: str, end: str) -> list[CompletionRecord]:
        return self.ledger.list_completions(user_id, start, end)

    def skip_habit(self, habit_id: int, day: str, reason: str | None = None) -> None:
        habit = self.get_habit(habit_id)
        self.skips.record_skip(habit.user_id, habit_id, day, reason)

    def undo_skip(self, habit_id: int, day: str) -> bool:
        self.get_habit(habit_id)
        return self.skips.undo_skip(habit_id, day)

    def list_skips(self, user_id: str, start: str, end: str) -> list[SkipRecord]:
        return self.skips.list_skips(user_id, start, end)

    def list_arrears(self, user_id: str, today: str | None = None) -> list[ArrearEntry]:
        return self.backlog.list_arrears(user_id, resolve_today(today))

    def get_profile(self, user_id: str) -> GamificationProfile:
        return self.rewards.profile(user_id)

    # ------------------------------------------------------------------
    # Reflections, account
    # ------------------------------------------------------------------

    def save_reflection(
        self, user_id: str, day: str, mood: str | None = None, note: str | None = None,
    ) -> Reflection:
        if mood is not None:
            _check_choice("mood", mood, MOODS)
        key = date_key(day)
        self._db.save_reflection(user_id, key, mood, note)
        return Reflection(user_id=user_id, date=key, mood=mood, note=note)

    def get_reflections(self, user_id: str, start: str, end: str) -> list[Reflection]:
        rows = self._db.list_reflections(user_id, date_key(start), date_key(end))
        return [
            Reflection(user_id=r["user_id"], date=r["date"], mood=r["mood"], note=r["note"])
            for r in rows
        ]

    def reset_account(self, user_id: str) -> dict[str, int]:
        """Delete every row owned by *user_id* and reset the profile to level 1."""
        removed = self._db.reset_user(user_id)
        log.info("Reset account %s: %s", user_id, removed)
        return removed
