"""Tests for the completion ledger and reward scoring."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from habitledger.config import default_config
from habitledger.errors import NotFoundError, UpstreamUnavailable, ValidationError
from habitledger.graph import DependencyGraph
from habitledger.models import HabitLink
from habitledger import ledger as ledger_module
from habitledger.rewards import GamificationLedger, RewardDelta
from habitledger.service import HabitService
from habitledger.store import LedgerDB

DAY = "2024-01-10"


@pytest.fixture()
def db(tmp_path: Path) -> LedgerDB:
    return LedgerDB(tmp_path / ".habitledger" / "habits.db")


@pytest.fixture()
def service(db: LedgerDB) -> HabitService:
    return HabitService(db)


def _make(service: HabitService, title: str, **kwargs) -> int:
    kwargs.setdefault("created_on", "2024-01-01")
    return service.create_habit("u1", title, range(7), **kwargs).id


class TestIdempotence:
    def test_toggle_on_twice_credits_once(self, service: HabitService) -> None:
        h = _make(service, "Meditate")
        first = service.toggle_completion(h, DAY, True)
        second = service.toggle_completion(h, DAY, True)

        assert first.applied is True
        assert first.xp_delta == 10
        assert second.applied is False
        assert second.xp_delta == 0
        assert second.completed is True
        assert len(service.list_completions("u1", DAY, DAY)) == 1
        assert service.get_profile("u1").current_points == 10

    def test_toggle_off_when_absent_is_noop(self, service: HabitService) -> None:
        h = _make(service, "Meditate")
        result = service.toggle_completion(h, DAY, False)
        assert result.applied is False
        assert result.completed is False
        assert result.xp_delta == 0
        assert service.get_profile("u1").current_points == 0

    def test_concurrent_duplicate_is_absorbed(self, service: HabitService, db: LedgerDB) -> None:
        h = _make(service, "Meditate")
        real_build = ledger_module.build_graph

        def racing_build(db_: LedgerDB, user_id: str):
            # A concurrent toggle-on lands between the graph read and the write
            db.record_completion(user_id, h, DAY, lambda done: RewardDelta(10))
            return real_build(db_, user_id)

        with patch.object(ledger_module, "build_graph", side_effect=racing_build):
            result = service.toggle_completion(h, DAY, True)
        assert result.applied is False
        assert result.xp_delta == 0
        assert service.get_profile("u1").current_points == 10


class TestRoundTrip:
    def test_on_then_off_empties_ledger(self, service: HabitService) -> None:
        h = _make(service, "Meditate")
        service.toggle_completion(h, DAY, True, note="calm")
        result = service.toggle_completion(h, DAY, False)

        assert result.applied is True
        assert result.completed is False
        assert result.xp_delta == -10
        assert service.ledger.get(h, DAY) is None
        assert service.get_profile("u1").current_points == 0

    def test_result_carries_profile(self, service: HabitService) -> None:
        h = _make(service, "Meditate")
        result = service.toggle_completion(h, DAY, True)
        assert result.profile is not None
        assert result.profile.current_points == 10
        assert result.habit_id == h
        assert result.date == DAY


class TestSynergy:
    def test_both_orderings(self, service: HabitService) -> None:
        a = _make(service, "Run")
        b = _make(service, "Stretch", links=[])
        service.create_link(a, b, "synergy")

        # A then B: B's completion gets the bonus
        ra = service.toggle_completion(a, "2024-01-10", True)
        rb = service.toggle_completion(b, "2024-01-10", True)
        assert (ra.xp_delta, ra.synergy_bonus) == (10, False)
        assert (rb.xp_delta, rb.synergy_bonus) == (15, True)

        # B then A on another day: A's completion gets the bonus
        rb = service.toggle_completion(b, "2024-01-11", True)
        ra = service.toggle_completion(a, "2024-01-11", True)
        assert (rb.xp_delta, rb.synergy_bonus) == (10, False)
        assert (ra.xp_delta, ra.synergy_bonus) == (15, True)

    def test_bonus_does_not_stack(self, service: HabitService) -> None:
        a = _make(service, "Run")
        b = _make(service, "Stretch")
        c = _make(service, "Hydrate")
        service.create_link(a, c, "synergy")
        service.create_link(b, c, "synergy")
        service.toggle_completion(a, DAY, True)
        service.toggle_completion(b, DAY, True)
        result = service.toggle_completion(c, DAY, True)
        assert result.xp_delta == 15

    def test_other_day_does_not_count(self, service: HabitService) -> None:
        a = _make(service, "Run")
        b = _make(service, "Stretch")
        service.create_link(a, b, "synergy")
        service.toggle_completion(a, "2024-01-09", True)
        result = service.toggle_completion(b, "2024-01-10", True)
        assert result.synergy_bonus is False

    def test_prerequisite_edge_gives_no_bonus(self, service: HabitService) -> None:
        a = _make(service, "Run")
        b = _make(service, "Stretch")
        service.create_link(a, b, "prerequisite")
        service.toggle_completion(a, DAY, True)
        assert service.toggle_completion(b, DAY, True).xp_delta == 10

    def test_partner_completed_mid_toggle_counts(self, service: HabitService, db: LedgerDB) -> None:
        a = _make(service, "Run")
        b = _make(service, "Stretch")
        service.create_link(a, b, "synergy")
        real_build = ledger_module.build_graph

        def racing_build(db_: LedgerDB, user_id: str):
            # The partner's completion commits after this toggle started
            db.record_completion(user_id, a, DAY, lambda done: RewardDelta(10))
            return real_build(db_, user_id)

        with patch.object(ledger_module, "build_graph", side_effect=racing_build):
            result = service.toggle_completion(b, DAY, True)
        assert (result.xp_delta, result.synergy_bonus) == (15, True)
        assert service.ledger.get(b, DAY).points == 15


class TestReversal:
    def test_stored_mode_reverses_awarded_amount(self, service: HabitService) -> None:
        a = _make(service, "Run")
        b = _make(service, "Stretch")
        service.create_link(a, b, "synergy")
        service.toggle_completion(a, DAY, True)
        service.toggle_completion(b, DAY, True)
        result = service.toggle_completion(b, DAY, False)
        assert result.xp_delta == -15
        assert service.get_profile("u1").current_points == 10

    def test_flat_mode_reverses_base(self, db: LedgerDB) -> None:
        config = default_config()
        config["rewards"]["reversal"] = "flat"
        service = HabitService(db, config)
        a = _make(service, "Run")
        b = _make(service, "Stretch")
        service.create_link(a, b, "synergy")
        service.toggle_completion(a, DAY, True)
        service.toggle_completion(b, DAY, True)
        result = service.toggle_completion(b, DAY, False)
        assert result.xp_delta == -10
        assert service.get_profile("u1").current_points == 15

    def test_round_trip_across_level_threshold(self, service: HabitService) -> None:
        h = _make(service, "Run")
        service.rewards.apply("u1", 95)
        up = service.toggle_completion(h, DAY, True)
        assert up.level_up is True
        down = service.toggle_completion(h, DAY, False)
        assert down.xp_delta == -10
        profile = service.get_profile("u1")
        assert (profile.level, profile.current_points, profile.next_level_points) == (1, 95, 100)


class TestLevelUp:
    def test_level_up_reported(self, tmp_path: Path) -> None:
        config = default_config()
        config["levels"]["initial_next_level_points"] = 20
        service = HabitService(LedgerDB.from_config(config, tmp_path / "levels.db"), config)
        h = _make(service, "Run")
        assert service.toggle_completion(h, "2024-01-10", True).level_up is False
        result = service.toggle_completion(h, "2024-01-11", True)
        assert result.level_up is True
        assert result.profile.level == 2
        assert result.profile.current_points == 0


class TestSkipSupersession:
    def test_completion_clears_skip(self, service: HabitService) -> None:
        h = _make(service, "Run")
        service.skip_habit(h, DAY, "rain")
        service.toggle_completion(h, DAY, True)
        assert service.list_skips("u1", DAY, DAY) == []

    def test_noop_toggle_keeps_state(self, service: HabitService) -> None:
        h = _make(service, "Run")
        service.toggle_completion(h, DAY, True)
        service.skip_habit(h, DAY)
        # Already completed: the repeated toggle is a no-op and does not touch skips
        service.toggle_completion(h, DAY, True)
        assert len(service.list_skips("u1", DAY, DAY)) == 1


class TestNotes:
    def test_edit_note_does_not_toggle(self, service: HabitService) -> None:
        h = _make(service, "Journal")
        service.toggle_completion(h, DAY, True, note="draft")
        record = service.edit_note(h, DAY, "final")
        assert record.note == "final"
        assert service.ledger.get(h, DAY) is not None
        assert service.get_profile("u1").current_points == 10

    def test_edit_note_requires_completion(self, service: HabitService) -> None:
        h = _make(service, "Journal")
        with pytest.raises(NotFoundError, match="no completion"):
            service.edit_note(h, DAY, "x")


class TestErrors:
    def test_unknown_habit(self, service: HabitService) -> None:
        with pytest.raises(NotFoundError):
            service.toggle_completion(404, DAY, True)

    def test_bad_date(self, service: HabitService) -> None:
        h = _make(service, "Run")
        with pytest.raises(ValidationError):
            service.toggle_completion(h, "10-01-2024", True)

    def test_store_failure_propagates_and_leaves_nothing(self, service: HabitService, db: LedgerDB) -> None:
        h = _make(service, "Run")
        with patch.object(db, "record_completion", side_effect=UpstreamUnavailable("down")):
            with pytest.raises(UpstreamUnavailable):
                service.toggle_completion(h, DAY, True)
        assert service.ledger.get(h, DAY) is None
        assert service.get_profile("u1").current_points == 0


class TestGamificationLedger:
    def _ledger(self, db: LedgerDB) -> GamificationLedger:
        return GamificationLedger(default_config(), db)

    def test_credit_without_synergy(self, db: LedgerDB) -> None:
        graph = DependencyGraph([])
        delta = self._ledger(db).credit_completion(1, graph, {2, 3})
        assert (delta.points, delta.synergy_bonus) == (10, False)

    def test_credit_with_reverse_edge(self, db: LedgerDB) -> None:
        graph = DependencyGraph([HabitLink(id=1, source_habit_id=2, target_habit_id=1, type="synergy")])
        delta = self._ledger(db).credit_completion(1, graph, {2})
        assert (delta.points, delta.synergy_bonus) == (15, True)

    def test_debit_modes(self, db: LedgerDB) -> None:
        assert self._ledger(db).debit_completion({"points": 15}) == -15
        config = default_config()
        config["rewards"]["reversal"] = "flat"
        assert GamificationLedger(config, db).debit_completion({"points": 15}) == -10

    def test_apply(self, db: LedgerDB) -> None:
        before, after = self._ledger(db).apply("u1", 30)
        assert before.current_points == 0
        assert after.current_points == 30
