"""Integration tests for habitledger CLI."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from habitledger.cli import CONFIG_TEMPLATE, cli
from habitledger.config import DEFAULTS


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Return a fresh tmp dir as project root."""
    return tmp_path


@pytest.fixture
def initialized(runner: CliRunner, project_dir: Path) -> Path:
    result = runner.invoke(cli, ["init", "--project-root", str(project_dir)])
    assert result.exit_code == 0, result.output
    return project_dir


def _run(runner: CliRunner, root: Path, *args: str):
    return runner.invoke(cli, [args[0], "--project-root", str(root), *args[1:]])


class TestInit:
    def test_creates_config_and_store(self, runner: CliRunner, project_dir: Path) -> None:
        result = runner.invoke(cli, ["init", "--project-root", str(project_dir)])
        assert result.exit_code == 0
        assert (project_dir / ".habitledger" / "config.yaml").exists()
        assert (project_dir / ".habitledger" / "habits.db").exists()
        assert "habitledger initialized." in result.output

    def test_template_matches_defaults(self) -> None:
        assert yaml.safe_load(CONFIG_TEMPLATE) == DEFAULTS

    def test_fails_if_dir_exists(self, runner: CliRunner, project_dir: Path) -> None:
        (project_dir / ".habitledger").mkdir()
        result = runner.invoke(cli, ["init", "--project-root", str(project_dir)])
        assert result.exit_code != 0
        assert ".habitledger/ already exists" in result.output


class TestHabitCommands:
    def test_add_and_list(self, runner: CliRunner, initialized: Path) -> None:
        result = _run(runner, initialized, "add", "Meditate", "--days", "weekdays", "--priority", "high")
        assert result.exit_code == 0, result.output
        assert "Created habit #1: Meditate" in result.output

        result = _run(runner, initialized, "habits", "--date", "2024-01-10")
        assert result.exit_code == 0
        assert "[ ] #1 Meditate (mon,tue,wed,thu,fri, high)" in result.output

    def test_add_goal(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Course", "--goal", "12", "--category", "learning")
        result = _run(runner, initialized, "habits")
        assert "[0/12]" in result.output

    def test_add_rejects_bad_days(self, runner: CliRunner, initialized: Path) -> None:
        result = _run(runner, initialized, "add", "X", "--days", "mon,someday")
        assert result.exit_code != 0
        assert "Unknown weekday" in result.output

    def test_no_habits(self, runner: CliRunner, initialized: Path) -> None:
        result = _run(runner, initialized, "habits")
        assert "No habits." in result.output

    def test_users_are_separate(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Mine", "--user", "alice")
        result = _run(runner, initialized, "habits", "--user", "bob")
        assert "No habits." in result.output


class TestCompletionCommands:
    def test_done_undo_profile(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Run")

        result = _run(runner, initialized, "done", "1", "--date", "2024-01-10", "--note", "5k")
        assert result.exit_code == 0, result.output
        assert "Completed #1 on 2024-01-10: +10 points" in result.output

        result = _run(runner, initialized, "done", "1", "--date", "2024-01-10")
        assert "No change." in result.output

        result = _run(runner, initialized, "profile")
        assert "Level 1: 10 / 100 points" in result.output

        result = _run(runner, initialized, "undo", "1", "--date", "2024-01-10")
        assert "Uncompleted #1 on 2024-01-10: -10 points" in result.output

    def test_synergy_and_lock(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Wake")
        _run(runner, initialized, "add", "Run")
        _run(runner, initialized, "add", "Stretch")
        result = _run(runner, initialized, "link", "1", "2", "--type", "prerequisite")
        assert "Linked #1 -> #2 (prerequisite)." in result.output
        _run(runner, initialized, "link", "2", "3", "--type", "synergy")

        result = _run(runner, initialized, "habits", "--date", "2024-01-10")
        assert "[L] #2 Run" in result.output

        _run(runner, initialized, "done", "1", "--date", "2024-01-10")
        _run(runner, initialized, "done", "2", "--date", "2024-01-10")
        result = _run(runner, initialized, "done", "3", "--date", "2024-01-10")
        assert "+15 points (synergy bonus)" in result.output

    def test_note(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Journal")
        result = _run(runner, initialized, "note", "1", "text", "--date", "2024-01-10")
        assert result.exit_code != 0
        assert "no completion" in result.output

        _run(runner, initialized, "done", "1", "--date", "2024-01-10")
        result = _run(runner, initialized, "note", "1", "better", "--date", "2024-01-10")
        assert result.exit_code == 0
        assert "Note saved for #1 on 2024-01-10." in result.output

    def test_missing_habit(self, runner: CliRunner, initialized: Path) -> None:
        result = _run(runner, initialized, "done", "42")
        assert result.exit_code != 0
        assert "Habit 42 not found" in result.output


class TestArrearsCommand:
    def test_lists_arrears(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Walk")
        result = _run(runner, initialized, "arrears")
        # A habit created today has no past obligations
        assert "No arrears." in result.output

    def test_skip_and_archive(self, runner: CliRunner, initialized: Path) -> None:
        _run(runner, initialized, "add", "Walk")
        result = _run(runner, initialized, "skip", "1", "--date", "2024-01-10", "--reason", "rain")
        assert "Skipped #1 on 2024-01-10." in result.output

        result = _run(runner, initialized, "archive", "1")
        assert "Archived #1 Walk." in result.output
        result = _run(runner, initialized, "habits")
        assert "No habits." in result.output
        result = _run(runner, initialized, "habits", "--all")
        assert "(archived)" in result.output


class TestMissingConfig:
    def test_command_without_init(self, runner: CliRunner, project_dir: Path) -> None:
        result = _run(runner, project_dir, "habits")
        assert result.exit_code != 0
        assert "Config not found" in result.output
