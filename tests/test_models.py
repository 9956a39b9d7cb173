"""
Tests for the domain records and the time grid.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from models import (
    AvailabilityWindow,
    PRIORITY_VALUES,
    PriorityLevel,
    PriorityToken,
    Therapist,
    TherapyProtocol,
    generate_time_slots,
    intervals_overlap,
)
from scheduler.config import GAConfig, SchedulerConfig

from helpers import START, at, make_session


class TestTimeSlots:

    def test_default_grid_has_five_slots_per_working_day(self):
        slots = generate_time_slots(START, horizon_days=1)
        assert [s.start.hour for s in slots] == [9, 11, 13, 15, 17]
        assert slots[0].id == "slot_0_9"
        assert all(s.duration == timedelta(hours=2) for s in slots)

    def test_last_slot_may_run_past_closing(self):
        slots = generate_time_slots(START, horizon_days=1)
        assert slots[-1].end.hour == 19

    def test_sundays_are_skipped(self):
        saturday = date(2025, 1, 18)
        slots = generate_time_slots(saturday, horizon_days=2)
        assert {s.start.date() for s in slots} == {saturday}
        assert all(s.day_index == 0 for s in slots)

    def test_two_week_horizon(self):
        # 14 days starting Monday contain two Sundays
        assert len(generate_time_slots(START, horizon_days=14)) == 12 * 5

    def test_slots_are_timezone_aware(self):
        slots = generate_time_slots(START, horizon_days=1)
        assert all(s.start.tzinfo is not None for s in slots)


class TestSession:

    def test_end_must_follow_start(self):
        with pytest.raises(ValidationError):
            make_session("s1", at(0, 11), at(0, 9))

    def test_naive_datetimes_are_read_as_utc(self):
        session = make_session("s1", datetime(2025, 1, 13, 9), datetime(2025, 1, 13, 11))
        assert session.start.tzinfo == timezone.utc

    def test_overlap_is_half_open(self):
        first = make_session("a", at(0, 9), at(0, 11))
        touching = make_session("b", at(0, 11), at(0, 13))
        inside = make_session("c", at(0, 10), at(0, 12))
        assert not first.overlaps(touching)
        assert first.overlaps(inside)
        assert intervals_overlap(at(0, 9), at(0, 11), at(0, 10), at(0, 12))

    def test_conflicts_need_a_shared_resource(self):
        a = make_session("a", at(0, 9), at(0, 11), room_id="room1", therapist_id="emp1")
        b = make_session("b", at(0, 9), at(0, 11), room_id="room2", therapist_id="emp2")
        c = make_session("c", at(0, 10), at(0, 12), room_id="room2", therapist_id="emp1")
        assert not a.conflicts_with(b)
        assert a.conflicts_with(c)
        assert not a.conflicts_with(a)

    def test_moved_to_leaves_original_untouched(self):
        session = make_session("a", at(0, 9), at(0, 11))
        moved = session.moved_to(at(1, 9), at(1, 11), 5)
        assert session.start == at(0, 9)
        assert moved.start == at(1, 9)
        assert moved.time_slot_index == 5
        assert moved.id == session.id

    def test_missing_token_counts_as_normal(self):
        assert make_session("a", at(0, 9), at(0, 11)).priority_value == 40


class TestPriorityToken:

    def test_values_match_level_table(self):
        expected = {"EMERGENCY": 100, "URGENT": 80, "HIGH": 60, "NORMAL": 40, "LOW": 20}
        for level, value in expected.items():
            assert PriorityToken.of(level).value == value
            assert PRIORITY_VALUES[PriorityLevel(level)] == value

    def test_unknown_level_falls_back_to_normal(self):
        assert PriorityToken.of("CRITICAL-ish").level == PriorityLevel.NORMAL
        assert PriorityToken.of(None).level == PriorityLevel.NORMAL

    def test_can_preempt_strictly_lower(self):
        assert PriorityToken.of("HIGH").can_preempt(PriorityToken.of("NORMAL"))
        assert not PriorityToken.of("HIGH").can_preempt(PriorityToken.of("HIGH"))
        assert PriorityToken.of("HIGH").can_preempt(None)
        assert not PriorityToken.of("LOW").can_preempt(None)

    def test_expired_token_never_preempts(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        token = PriorityToken.of("EMERGENCY", expires_at=past)
        assert token.is_expired()
        assert not token.can_preempt(PriorityToken.of("LOW"))

    def test_to_dict_carries_value_and_color(self):
        data = PriorityToken.of("URGENT", "Acute flare").to_dict()
        assert data["level"] == "URGENT"
        assert data["value"] == 80
        assert data["color"] == "#f97316"
        assert data["reason"] == "Acute flare"


class TestDomainRecords:

    def test_therapist_weekday_matching(self):
        therapist = Therapist(id="t", shifts=["Monday", "wed"])
        assert therapist.works_on("Mon")
        assert therapist.works_on("Wednesday")
        assert not therapist.works_on("Tue")

    def test_therapist_rejects_unknown_weekday(self):
        with pytest.raises(ValidationError):
            Therapist(id="t", shifts=["Funday"])

    def test_protocol_orders_workflow_by_step(self):
        protocol = TherapyProtocol(id="t", name="Vamana", workflow=[
            {"id": "b", "step": 2, "action": "Second"},
            {"id": "a", "step": 1, "action": "First"},
        ])
        assert [s.id for s in protocol.ordered_workflow()] == ["a", "b"]

    def test_protocol_rejects_duplicate_step_ids(self):
        with pytest.raises(ValidationError):
            TherapyProtocol(id="t", name="Vamana", workflow=[
                {"id": "a", "step": 1, "action": "First"},
                {"id": "a", "step": 2, "action": "Second"},
            ])

    def test_availability_window_bounds(self):
        window = AvailabilityWindow(start=at(0, 0), end=at(2, 0))
        assert window.contains(at(1, 9))
        assert not window.contains(at(3, 9))
        with pytest.raises(ValidationError):
            AvailabilityWindow(start=at(2, 0), end=at(0, 0))


class TestConfig:

    def test_defaults(self):
        config = SchedulerConfig()
        assert config.scheduling_horizon_days == 14
        assert (config.working_hours_start, config.working_hours_end) == (9, 18)
        assert config.ga.population_size == 50
        assert config.pso.swarm_size == 30
        assert config.enable_ga and config.enable_pso and config.enable_explainability

    def test_working_hours_must_be_ordered(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(working_hours_start=18, working_hours_end=9)

    def test_elitism_smaller_than_population(self):
        with pytest.raises(ValidationError):
            GAConfig(population_size=4, elitism_count=4)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(timezone="Mars/Olympus_Mons")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ENABLE_GA", "false")
        monkeypatch.setenv("SCHEDULING_HORIZON_DAYS", "7")
        monkeypatch.setenv("SCHEDULER_SEED", "42")
        config = SchedulerConfig.from_env()
        assert config.enable_ga is False
        assert config.scheduling_horizon_days == 7
        assert config.seed == 42
