"""CLI entry point for habitledger."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click

from habitledger.errors import HabitLedgerError
from habitledger.models import ToggleResult
from habitledger.service import HabitService, resolve_today

# Default config template
CONFIG_TEMPLATE = """\
store:
  path: .habitledger/habits.db
  timeout: 5.0  # seconds to wait on a locked database

rewards:
  base: 10
  synergy_bonus: 5
  reversal: stored  # stored | flat

levels:
  initial_next_level_points: 100
  growth_factor: 1.5

arrears:
  window_days: 30
"""

_project_root_option = click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Project root directory (default: cwd).",
)

_user_option = click.option(
    "--user",
    "user_id",
    envvar="HABITLEDGER_USER",
    default="local",
    show_default=True,
    help="User id owning the habits.",
)

_date_option = click.option(
    "--date",
    "day",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Calendar day (YYYY-MM-DD, default: today).",
)


def _day_key(day: object) -> str | None:
    return day.date().isoformat() if day else None  # type: ignore[union-attr]


@contextmanager
def _surface_errors() -> Iterator[None]:
    try:
        yield
    except HabitLedgerError as exc:
        raise click.ClickException(str(exc)) from exc


def _open_service(project_root: str) -> HabitService:
    from habitledger.config import load_config, resolve_db_path

    root = Path(project_root)
    config = load_config(root)
    return HabitService.open(config, resolve_db_path(config, root))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """habitledger: habit recurrence, completion ledger and backlog."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@cli.command()
@_project_root_option
def init(project_root: str) -> None:
    """Initialize .habitledger/ with a config and an empty store."""
    from habitledger.config import CONFIG_DIR

    root = Path(project_root)
    config_dir = root / CONFIG_DIR

    if config_dir.exists():
        click.echo(f"{CONFIG_DIR}/ already exists at {config_dir}")
        raise SystemExit(1)

    config_dir.mkdir(parents=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(CONFIG_TEMPLATE)
    click.echo(f"Created {config_path}")

    # Opening the service validates the config and creates the tables
    with _surface_errors():
        _open_service(project_root)
    click.echo("habitledger initialized.")


@cli.command()
@_project_root_option
@_user_option
@click.argument("title")
@click.option(
    "--days",
    default="daily",
    show_default=True,
    help="Weekdays: 'daily', 'weekdays', 'weekends', or a list like 'mon,wed,fri' / '1,3,5' (0 = Sunday).",
)
@click.option("--category", default="health", show_default=True)
@click.option("--time", "time_of_day", default="anytime", show_default=True)
@click.option("--priority", default="medium", show_default=True)
@click.option("--goal", "goal_duration", type=int, default=None, help="Make this a goal with N sessions.")
def add(
    project_root: str,
    user_id: str,
    title: str,
    days: str,
    category: str,
    time_of_day: str,
    priority: str,
    goal_duration: int | None,
) -> None:
    """Create a habit."""
    from habitledger.recurrence import parse_frequency

    with _surface_errors():
        service = _open_service(project_root)
        habit = service.create_habit(
            user_id,
            title,
            parse_frequency(days),
            category=category,
            time_of_day=time_of_day,
            priority=priority,
            habit_type="goal" if goal_duration else "ritual",
            goal_duration=goal_duration,
        )
    click.echo(f"Created habit #{habit.id}: {habit.title}")


@cli.command()
@_project_root_option
@_user_option
@_date_option
@click.option("--all", "show_all", is_flag=True, help="Include archived habits.")
def habits(project_root: str, user_id: str, day: object, show_all: bool) -> None:
    """List habits with their state for a day."""
    from habitledger.recurrence import WEEKDAY_NAMES

    with _surface_errors():
        service = _open_service(project_root)
        views = service.list_habits(user_id, _day_key(day))

    shown = [v for v in views if show_all or not v.habit.archived]
    if not shown:
        click.echo("No habits.")
        return
    for v in shown:
        h = v.habit
        if v.completed_today:
            mark = "x"
        elif v.skipped_today:
            mark = "-"
        elif v.is_locked:
            mark = "L"
        else:
            mark = " "
        days = ",".join(WEEKDAY_NAMES[d] for d in sorted(h.frequency))
        extra = " (archived)" if h.archived else ""
        if h.type == "goal":
            extra += f" [{h.goal_progress}/{h.goal_duration}]"
        click.echo(f"[{mark}] #{h.id} {h.title} ({days}, {h.priority}){extra}")


def _echo_toggle(result: ToggleResult) -> None:
    if not result.applied:
        click.echo("No change.")
        return
    verb = "Completed" if result.completed else "Uncompleted"
    bonus = " (synergy bonus)" if result.synergy_bonus else ""
    click.echo(f"{verb} #{result.habit_id} on {result.date}: {result.xp_delta:+d} points{bonus}")
    if result.level_up and result.profile is not None:
        click.echo(f"Level up! Now level {result.profile.level}.")


@cli.command()
@_project_root_option
@_date_option
@click.argument("habit_id", type=int)
@click.option("--note", default=None, help="Note to attach to the completion.")
def done(project_root: str, day: object, habit_id: int, note: str | None) -> None:
    """Mark a habit completed."""
    with _surface_errors():
        service = _open_service(project_root)
        result = service.toggle_completion(habit_id, resolve_today(_day_key(day)), True, note)
    _echo_toggle(result)


@cli.command()
@_project_root_option
@_date_option
@click.argument("habit_id", type=int)
def undo(project_root: str, day: object, habit_id: int) -> None:
    """Remove a habit completion."""
    with _surface_errors():
        service = _open_service(project_root)
        result = service.toggle_completion(habit_id, resolve_today(_day_key(day)), False)
    _echo_toggle(result)


@cli.command()
@_project_root_option
@_date_option
@click.argument("habit_id", type=int)
@click.argument("text")
def note(project_root: str, day: object, habit_id: int, text: str) -> None:
    """Edit the note on an existing completion."""
    with _surface_errors():
        service = _open_service(project_root)
        record = service.edit_note(habit_id, resolve_today(_day_key(day)), text)
    click.echo(f"Note saved for #{record.habit_id} on {record.date}.")


@cli.command()
@_project_root_option
@_date_option
@click.argument("habit_id", type=int)
@click.option("--reason", default=None)
def skip(project_root: str, day: object, habit_id: int, reason: str | None) -> None:
    """Excuse a habit for a day."""
    with _surface_errors():
        service = _open_service(project_root)
        key = resolve_today(_day_key(day))
        service.skip_habit(habit_id, key, reason)
    click.echo(f"Skipped #{habit_id} on {key}.")


@cli.command()
@_project_root_option
@_user_option
@_date_option
def arrears(project_root: str, user_id: str, day: object) -> None:
    """List missed obligations over the trailing window, most recent first."""
    with _surface_errors():
        service = _open_service(project_root)
        entries = service.list_arrears(user_id, _day_key(day))

    if not entries:
        click.echo("No arrears.")
        return
    click.echo(f"Arrears ({len(entries)}):")
    for a in entries:
        click.echo(f"  {a.date}  #{a.habit_id} {a.title} [{a.priority}]")


@cli.command()
@_project_root_option
@_user_option
def profile(project_root: str, user_id: str) -> None:
    """Show level and points."""
    with _surface_errors():
        service = _open_service(project_root)
        p = service.get_profile(user_id)
    click.echo(f"Level {p.level}: {p.current_points} / {p.next_level_points} points")


@cli.command()
@_project_root_option
@click.argument("source_id", type=int)
@click.argument("target_id", type=int)
@click.option(
    "--type",
    "link_type",
    type=click.Choice(["prerequisite", "chain", "synergy", "conflict"]),
    required=True,
)
def link(project_root: str, source_id: int, target_id: int, link_type: str) -> None:
    """Link two habits."""
    with _surface_errors():
        service = _open_service(project_root)
        created = service.create_link(source_id, target_id, link_type)
    click.echo(f"Linked #{source_id} -> #{target_id} ({created.type}).")


@cli.command()
@_project_root_option
@click.argument("habit_id", type=int)
def archive(project_root: str, habit_id: int) -> None:
    """Archive a habit. Archived habits are never scheduled, locked or in arrears."""
    with _surface_errors():
        service = _open_service(project_root)
        habit = service.archive_habit(habit_id)
    click.echo(f"Archived #{habit.id} {habit.title}.")
