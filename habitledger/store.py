"""SQLite row store backing the habit engine.

Manages six tables in ``.habitledger/habits.db``:

- ``habits``: habit definitions, soft-disabled via ``archived``
- ``habit_links``: directed edges between habits
- ``habit_logs``: completion ledger, UNIQUE on (habit_id, date)
- ``habit_skips``: excused obligations, UNIQUE on (habit_id, date)
- ``profiles``: one gamification row per user
- ``daily_reflections``: mood + note per (user_id, date)

Unique-constraint violations surface as :class:`ConflictIgnored` and
``sqlite3.OperationalError`` (locked / unreachable database) as
:class:`UpstreamUnavailable`. Everything else propagates unmodified.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from habitledger.errors import ConflictIgnored, UpstreamUnavailable

log = logging.getLogger(__name__)

# Columns callers may change through update_habit()
HABIT_UPDATABLE = (
    "title", "description", "category", "time_of_day", "frequency",
    "priority", "sort_order", "archived", "goal_duration", "goal_progress",
)

# Tables cleared by reset_user(), children first
USER_TABLES = (
    "habit_logs", "habit_skips", "habit_links", "daily_reflections", "habits",
)


class LedgerDB:
    """SQLite state manager for habits, ledgers and profiles.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    timeout:
        Seconds to wait on a locked database before giving up.
    initial_next_level_points:
        Points required to leave level 1 on a fresh profile.
    growth_factor:
        Multiplier applied to the level threshold on every level up.
    """

    def __init__(
        self,
        db_path: Path,
        timeout: float = 5.0,
        initial_next_level_points: int = 100,
        growth_factor: float = 1.5,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        self._initial_next = initial_next_level_points
        self._growth = growth_factor
        self._init_tables()

    @classmethod
    def from_config(cls, config: dict[str, Any], db_path: Path) -> LedgerDB:
        return cls(
            db_path,
            timeout=config["store"]["timeout"],
            initial_next_level_points=config["levels"]["initial_next_level_points"],
            growth_factor=config["levels"]["growth_factor"],
        )

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=self._timeout)
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.OperationalError as exc:
            raise UpstreamUnavailable(f"Cannot open store {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            raise UpstreamUnavailable(f"Store unavailable: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a BEGIN IMMEDIATE transaction."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            if "UNIQUE constraint failed" in str(exc):
                raise ConflictIgnored(str(exc)) from exc
            raise
        except sqlite3.OperationalError as exc:
            conn.rollback()
            raise UpstreamUnavailable(f"Store unavailable: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_tables(self) -> None:
        with self._reading() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS habits (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       TEXT NOT NULL,
                    title         TEXT NOT NULL,
                    description   TEXT,
                    category      TEXT NOT NULL,
                    time_of_day   TEXT NOT NULL,
                    frequency     TEXT NOT NULL,
                    type          TEXT NOT NULL DEFAULT 'ritual',
                    goal_duration INTEGER,
                    goal_progress INTEGER NOT NULL DEFAULT 0,
                    priority      TEXT NOT NULL DEFAULT 'medium',
                    sort_order    INTEGER NOT NULL DEFAULT 0,
                    archived      INTEGER NOT NULL DEFAULT 0,
                    created_at    TEXT NOT NULL,
                    created_on    TEXT
                );

                CREATE TABLE IF NOT EXISTS habit_links (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id         TEXT NOT NULL,
                    source_habit_id INTEGER NOT NULL,
                    target_habit_id INTEGER NOT NULL,
                    type            TEXT NOT NULL,
                    metadata        TEXT,
                    created_at      TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS habit_logs (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     TEXT NOT NULL,
                    habit_id    INTEGER NOT NULL,
                    date        TEXT NOT NULL,
                    note        TEXT,
                    points      INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT NOT NULL,
                    UNIQUE (habit_id, date)
                );

                CREATE TABLE IF NOT EXISTS habit_skips (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     TEXT NOT NULL,
                    habit_id    INTEGER NOT NULL,
                    date        TEXT NOT NULL,
                    reason      TEXT,
                    created_at  TEXT NOT NULL,
                    UNIQUE (habit_id, date)
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    user_id           TEXT PRIMARY KEY,
                    level             INTEGER NOT NULL DEFAULT 1,
                    current_points    INTEGER NOT NULL DEFAULT 0,
                    next_level_points INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS daily_reflections (
                    user_id     TEXT NOT NULL,
                    date        TEXT NOT NULL,
                    mood        TEXT,
                    note        TEXT,
                    PRIMARY KEY (user_id, date)
                );

                CREATE INDEX IF NOT EXISTS idx_logs_user_date ON habit_logs (user_id, date);
                CREATE INDEX IF NOT EXISTS idx_skips_user_date ON habit_skips (user_id, date);
                CREATE INDEX IF NOT EXISTS idx_links_user ON habit_links (user_id);
            """)

            # Add created_on column (idempotent), backfilled from created_at
            try:
                conn.execute("ALTER TABLE habits ADD COLUMN created_on TEXT")
            except sqlite3.OperationalError:
                pass  # Column already exists
            conn.execute(
                "UPDATE habits SET created_on = substr(created_at, 1, 10) "
                "WHERE created_on IS NULL"
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Habits
    # ------------------------------------------------------------------

    def create_habit(
        self,
        user_id: str,
        title: str,
        frequency: list[int],
        category: str,
        time_of_day: str,
        habit_type: str = "ritual",
        description: str | None = None,
        goal_duration: int | None = None,
        goal_progress: int = 0,
        priority: str = "medium",
        sort_order: int = 0,
        created_on: str | None = None,
    ) -> int:
        """Insert a habit. Returns the row id.

        *created_on* is the local calendar day of creation as a date key;
        it defaults to today on the local clock. ``created_at`` always
        records the UTC insert time.
        """
        with self._writing() as conn:
            cur = conn.execute(
                """INSERT INTO habits
                   (user_id, title, description, category, time_of_day, frequency,
                    type, goal_duration, goal_progress, priority, sort_order,
                    archived, created_at, created_on)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)""",
                (
                    user_id, title, description, category, time_of_day,
                    json.dumps(sorted(frequency)), habit_type, goal_duration,
                    goal_progress, priority, sort_order, _now_iso(),
                    created_on or date.today().isoformat(),
                ),
            )
            return cur.lastrowid  # type: ignore[return-value]

    def get_habit(self, habit_id: int) -> dict[str, Any] | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM habits WHERE id = ?", (habit_id,)
            ).fetchone()
            return dict(row) if row else None

    def list_habits(self, user_id: str) -> list[dict[str, Any]]:
        """Return all habits for *user_id* in creation order."""
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT * FROM habits WHERE user_id = ? ORDER BY created_at, id",
                (user_id,),
            ).fetchall()
            return [dict(r) for r in rows]

    def update_habit(self, habit_id: int, **fields: Any) -> bool:
        """Update columns on a habit. Returns False if the habit does not exist.

        Valid keys: see ``HABIT_UPDATABLE``. ``frequency`` is given as a
        list of weekday ints.
        """
        invalid = set(fields) - set(HABIT_UPDATABLE)
        if invalid:
            raise ValueError(f"Invalid habit fields: {invalid}")
        if "frequency" in fields:
            fields["frequency"] = json.dumps(sorted(fields["frequency"]))
        if "archived" in fields:
            fields["archived"] = int(bool(fields["archived"]))

        with self._writing() as conn:
            if not fields:
                row = conn.execute("SELECT 1 FROM habits WHERE id = ?", (habit_id,)).fetchone()
                return row is not None
            set_clause = ", ".join(f"{k} = ?" for k in fields)
            cur = conn.execute(
                f"UPDATE habits SET {set_clause} WHERE id = ?",
                [*fields.values(), habit_id],
            )
            return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def list_links(self, user_id: str) -> list[dict[str, Any]]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT * FROM habit_links WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
            return [dict(r) for r in rows]

    def get_link(self, link_id: int) -> dict[str, Any] | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM habit_links WHERE id = ?", (link_id,)
            ).fetchone()
            return dict(row) if row else None

    def add_link(
        self,
        user_id: str,
        source_habit_id: int,
        target_habit_id: int,
        link_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Insert a single link. Returns the row id."""
        with self._writing() as conn:
            cur = conn.execute(
                """INSERT INTO habit_links
                   (user_id, source_habit_id, target_habit_id, type, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    user_id, source_habit_id, target_habit_id, link_type,
                    json.dumps(metadata or {}), _now_iso(),
                ),
            )
            return cur.lastrowid  # type: ignore[return-value]

    def replace_links(
        self,
        user_id: str,
        source_habit_id: int,
        links: list[tuple[int, str, dict[str, Any] | None]],
    ) -> list[int]:
        """Atomically replace every outgoing link of *source_habit_id*.

        *links* is a list of ``(target_habit_id, type, metadata)``.
        Returns the new row ids.
        """
        now = _now_iso()
        with self._writing() as conn:
            conn.execute(
                "DELETE FROM habit_links WHERE source_habit_id = ?",
                (source_habit_id,),
            )
            ids = []
            for target_id, link_type, metadata in links:
                cur = conn.execute(
                    """INSERT INTO habit_links
                       (user_id, source_habit_id, target_habit_id, type, metadata, created_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (user_id, source_habit_id, target_id, link_type,
                     json.dumps(metadata or {}), now),
                )
                ids.append(cur.lastrowid)
            return ids

    def delete_link(self, link_id: int) -> bool:
        """Delete a link. Returns True if a row was removed."""
        with self._writing() as conn:
            cur = conn.execute("DELETE FROM habit_links WHERE id = ?", (link_id,))
            return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Completion ledger
    # ------------------------------------------------------------------

    def record_completion(
        self,
        user_id: str,
        habit_id: int,
        date: str,
        credit: Callable[[set[int]], Any],
        note: str | None = None,
    ) -> tuple[Any, dict[str, Any], dict[str, Any]]:
        """Insert a completion, credit it and clear any skip, atomically.

        *credit* receives the ids of the user's other habits completed on
        *date*, read inside the write transaction, and returns a reward
        with a ``points`` attribute. Returns ``(reward, before, after)``.

        Raises
        ------
        ConflictIgnored
            If a completion already exists for (habit_id, date). Nothing
            is credited in that case.
        """
        with self._writing() as conn:
            rows = conn.execute(
                "SELECT habit_id FROM habit_logs WHERE user_id = ? AND date = ?",
                (user_id, date),
            ).fetchall()
            done = {r["habit_id"] for r in rows} - {habit_id}
            reward = credit(done)
            conn.execute(
                """INSERT INTO habit_logs
                   (user_id, habit_id, date, note, points, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (user_id, habit_id, date, note, reward.points, _now_iso()),
            )
            before, after = self._apply_delta_on_conn(conn, user_id, reward.points)
            conn.execute(
                "DELETE FROM habit_skips WHERE habit_id = ? AND date = ?",
                (habit_id, date),
            )
            return reward, before, after

    def remove_completion(
        self,
        user_id: str,
        habit_id: int,
        date: str,
        debit: Callable[[dict[str, Any]], int],
    ) -> tuple[int, dict[str, Any], dict[str, Any]] | None:
        """Delete a completion and apply ``debit(row)`` to the profile, atomically.

        *debit* maps the deleted row to the signed delta to apply.
        Returns ``(delta, before, after)``, or None if no completion existed.
        """
        with self._writing() as conn:
            row = conn.execute(
                "SELECT * FROM habit_logs WHERE habit_id = ? AND date = ?",
                (habit_id, date),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM habit_logs WHERE id = ?", (row["id"],))
            delta = debit(dict(row))
            before, after = self._apply_delta_on_conn(conn, user_id, delta)
            return delta, before, after

    def get_completion(self, habit_id: int, date: str) -> dict[str, Any] | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM habit_logs WHERE habit_id = ? AND date = ?",
                (habit_id, date),
            ).fetchone()
            return dict(row) if row else None

    def set_completion_note(self, habit_id: int, date: str, note: str | None) -> bool:
        """Set the note on an existing completion. Returns False if absent."""
        with self._writing() as conn:
            cur = conn.execute(
                "UPDATE habit_logs SET note = ? WHERE habit_id = ? AND date = ?",
                (note, habit_id, date),
            )
            return cur.rowcount == 1

    def list_completions(
        self, user_id: str, start: str, end: str,
    ) -> list[dict[str, Any]]:
        """Completions for *user_id* with ``start <= date <= end``."""
        with self._reading() as conn:
            rows = conn.execute(
                """SELECT * FROM habit_logs
                   WHERE user_id = ? AND date >= ? AND date <= ?
                   ORDER BY date, habit_id""",
                (user_id, start, end),
            ).fetchall()
            return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Skips
    # ------------------------------------------------------------------

    def insert_skip(
        self, user_id: str, habit_id: int, date: str, reason: str | None = None,
    ) -> int:
        """Insert a skip. Raises ConflictIgnored if one already exists."""
        with self._writing() as conn:
            cur = conn.execute(
                """INSERT INTO habit_skips (user_id, habit_id, date, reason, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (user_id, habit_id, date, reason, _now_iso()),
            )
            return cur.lastrowid  # type: ignore[return-value]

    def delete_skip(self, habit_id: int, date: str) -> bool:
        with self._writing() as conn:
            cur = conn.execute(
                "DELETE FROM habit_skips WHERE habit_id = ? AND date = ?",
                (habit_id, date),
            )
            return cur.rowcount == 1

    def list_skips(self, user_id: str, start: str, end: str) -> list[dict[str, Any]]:
        """Skips for *user_id* with ``start <= date <= end``."""
        with self._reading() as conn:
            rows = conn.execute(
                """SELECT * FROM habit_skips
                   WHERE user_id = ? AND date >= ? AND date <= ?
                   ORDER BY date, habit_id""",
                (user_id, start, end),
            ).fetchall()
            return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> dict[str, Any]:
        """Return the profile row for *user_id*, creating it on first access."""
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is not None:
                return dict(row)
        with self._writing() as conn:
            self._ensure_profile_on_conn(conn, user_id)
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
            return dict(row)

    def increment_points(
        self, user_id: str, delta: int,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Atomically apply a signed *delta*. Returns ``(before, after)``."""
        with self._writing() as conn:
            return self._apply_delta_on_conn(conn, user_id, delta)

    def _ensure_profile_on_conn(self, conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            """INSERT OR IGNORE INTO profiles (user_id, level, current_points, next_level_points)
               VALUES (?, 1, 0, ?)""",
            (user_id, self._initial_next),
        )

    def _reset_profile_on_conn(self, conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            """INSERT INTO profiles (user_id, level, current_points, next_level_points)
               VALUES (?, 1, 0, ?)
               ON CONFLICT (user_id) DO UPDATE SET
                   level = 1, current_points = 0,
                   next_level_points = excluded.next_level_points""",
            (user_id, self._initial_next),
        )

    def _threshold(self, level: int) -> int:
        """Points needed to leave *level*, replaying the growth from level 1."""
        threshold = self._initial_next
        for _ in range(level - 1):
            threshold = max(1, math.floor(threshold * self._growth))
        return threshold

    def _apply_delta_on_conn(
        self, conn: sqlite3.Connection, user_id: str, delta: int,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Apply *delta* inside the caller's transaction.

        Each time the running total reaches the threshold the overflow
        carries into the next level and the threshold grows by
        ``growth_factor``. A debit that drives the total below zero
        un-carries level by level, so crediting and then debiting the same
        amount restores the profile exactly. Points floor at zero on level 1.
        """
        self._ensure_profile_on_conn(conn, user_id)
        row = conn.execute(
            "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        before = dict(row)

        level = before["level"]
        points = before["current_points"] + delta
        next_points = before["next_level_points"]
        while points >= next_points:
            points -= next_points
            level += 1
            next_points = max(1, math.floor(next_points * self._growth))
        while points < 0 and level > 1:
            level -= 1
            next_points = self._threshold(level)
            points += next_points
        points = max(0, points)

        conn.execute(
            """UPDATE profiles SET level = ?, current_points = ?, next_level_points = ?
               WHERE user_id = ?""",
            (level, points, next_points, user_id),
        )
        after = {**before, "level": level, "current_points": points,
                 "next_level_points": next_points}
        if level > before["level"]:
            log.info("User %s reached level %d", user_id, level)
        elif level < before["level"]:
            log.info("User %s dropped back to level %d", user_id, level)
        return before, after

    # ------------------------------------------------------------------
    # Reflections
    # ------------------------------------------------------------------

    def save_reflection(
        self, user_id: str, date: str, mood: str | None, note: str | None,
    ) -> None:
        """Insert or replace the reflection for (user_id, date)."""
        with self._writing() as conn:
            conn.execute(
                """INSERT INTO daily_reflections (user_id, date, mood, note)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (user_id, date) DO UPDATE SET
                       mood = excluded.mood, note = excluded.note""",
                (user_id, date, mood, note),
            )

    def list_reflections(self, user_id: str, start: str, end: str) -> list[dict[str, Any]]:
        with self._reading() as conn:
            rows = conn.execute(
                """SELECT * FROM daily_reflections
                   WHERE user_id = ? AND date >= ? AND date <= ?
                   ORDER BY date""",
                (user_id, start, end),
            ).fetchall()
            return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Account reset
    # ------------------------------------------------------------------

    def reset_user(self, user_id: str) -> dict[str, int]:
        """Delete all rows owned by *user_id* and reset the profile.

        Returns a per-table count of removed rows.
        """
        removed: dict[str, int] = {}
        with self._writing() as conn:
            for table in USER_TABLES:
                cur = conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
                removed[table] = cur.rowcount
            self._reset_profile_on_conn(conn, user_id)
        return removed


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()
