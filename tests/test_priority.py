"""
Tests for the priority queue, preemption rules and the one-shot priority flow.
"""

from datetime import datetime, timedelta, timezone

import pytest

from models import PriorityToken, generate_time_slots
from scheduler.explainability import DecisionType, ExplainabilityLog
from scheduler.priority import (
    PreemptionCandidate,
    PreemptionManager,
    PriorityQueueManager,
    apply_priority_heuristics,
)

from helpers import START, at, make_session


class TestPriorityQueue:

    def test_highest_priority_first(self):
        queue = PriorityQueueManager()
        queue.enqueue("low", PriorityToken.of("LOW"))
        queue.enqueue("emergency", PriorityToken.of("EMERGENCY"))
        queue.enqueue("normal")
        assert [queue.dequeue().request for _ in range(3)] == ["emergency", "normal", "low"]
        assert queue.dequeue() is None

    def test_fifo_within_equal_priority(self):
        queue = PriorityQueueManager()
        for name in ("first", "second", "third"):
            queue.enqueue(name, PriorityToken.of("HIGH"))
        assert [queue.dequeue().request for _ in range(3)] == ["first", "second", "third"]

    def test_peek_does_not_remove(self):
        queue = PriorityQueueManager()
        queue.enqueue("only")
        assert queue.peek().request == "only"
        assert len(queue) == 1

    def test_status_and_pending(self):
        queue = PriorityQueueManager()
        first = queue.enqueue("a")
        queue.enqueue("b")
        assert queue.update_status(first, "processing")
        assert not queue.update_status("missing", "processing")
        assert [e.request for e in queue.pending()] == ["b"]

    def test_remove_expired(self):
        queue = PriorityQueueManager()
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        queue.enqueue("stale", PriorityToken.of("URGENT", expires_at=past))
        queue.enqueue("fresh", PriorityToken.of("LOW"))
        assert queue.remove_expired() == 1
        assert queue.peek().request == "fresh"


class TestPreemptionRules:

    @pytest.mark.parametrize("new,existing,expected", [
        ("EMERGENCY", "NORMAL", True),
        ("EMERGENCY", "URGENT", True),
        ("EMERGENCY", "EMERGENCY", False),
        ("URGENT", "HIGH", True),     # 80 > 60 + 10
        ("HIGH", "NORMAL", True),     # 60 > 40 + 10
        ("HIGH", "HIGH", False),
        ("NORMAL", "HIGH", False),
        ("NORMAL", "LOW", True),      # 40 > 20 + 10
    ])
    def test_buffer_rule(self, new, existing, expected):
        manager = PreemptionManager()
        a = make_session("new", at(0, 9), at(0, 11), priority=new)
        b = make_session("old", at(0, 9), at(0, 11), priority=existing)
        assert manager.can_preempt(a, b).can_preempt is expected

    def test_missing_tokens_count_as_normal(self):
        manager = PreemptionManager()
        a = make_session("new", at(0, 9), at(0, 11), priority="HIGH")
        b = make_session("old", at(0, 9), at(0, 11))
        assert manager.can_preempt(a, b).can_preempt

    def test_candidates_ranked_by_priority_gap(self):
        manager = PreemptionManager()
        new = make_session("new", at(0, 9), at(0, 11), priority="EMERGENCY")
        existing = [
            make_session("normal", at(0, 9), at(0, 11), priority="NORMAL"),
            make_session("low", at(0, 9), at(0, 11), priority="LOW"),
            make_session("other", at(0, 9), at(0, 11), priority="EMERGENCY"),
        ]
        ranked = manager.find_preemptable_sessions(new, existing, required_slots=2)
        assert [c.session.id for c in ranked] == ["low", "normal"]
        assert ranked[0].priority_diff == 80


class TestPreemptionExecution:

    def test_relocates_to_earliest_free_slot(self):
        explainer = ExplainabilityLog()
        manager = PreemptionManager(explainer)
        slots = generate_time_slots(START, horizon_days=1)
        new = make_session("new", at(0, 9), at(0, 11), priority="EMERGENCY")
        old = make_session("old", at(0, 9), at(0, 11), priority="NORMAL")

        outcome = manager.execute_preemption([new], [PreemptionCandidate(old, "Emergency", 60)], slots)

        assert [s.id for s in outcome.preempted] == ["old"]
        assert outcome.rescheduled[0].new_slot == (at(0, 11), at(0, 13))
        assert not outcome.failed
        assert len(manager.history()) == 1
        assert explainer.metrics["preemptions"] == 1
        assert explainer.get_by_type(DecisionType.PREEMPTION)[0].details["result"] == "Rescheduled successfully"

    def test_short_slots_are_skipped(self):
        manager = PreemptionManager()
        long_session = make_session("old", at(0, 9), at(0, 13))
        short_slots = generate_time_slots(START, horizon_days=1)
        assert manager.find_alternative_slot(long_session, short_slots) is None

    def test_failure_reported_not_retried(self):
        manager = PreemptionManager()
        new = make_session("new", at(0, 9), at(0, 11), priority="EMERGENCY")
        old = make_session("old", at(0, 9), at(0, 11))
        slots = [s for s in generate_time_slots(START, horizon_days=1) if s.start == at(0, 9)]

        outcome = manager.execute_preemption([new], [PreemptionCandidate(old, "Emergency", 60)], slots)

        assert not outcome.rescheduled
        assert outcome.failed[0]["reason"] == "No alternative slot available"
        assert outcome.preempted[0].id == "old"


class TestApplyPriorityHeuristics:

    def test_free_slot_is_simply_appended(self):
        existing = [make_session("old", at(0, 9), at(0, 11))]
        request = make_session("new", at(0, 13), at(0, 15), priority="LOW")
        outcome = apply_priority_heuristics(existing, request, [])
        assert outcome.success
        assert [s.id for s in outcome.schedule] == ["old", "new"]

    def test_insufficient_priority_is_refused(self):
        existing = [make_session("old", at(0, 9), at(0, 11), priority="URGENT")]
        request = make_session("new", at(0, 9), at(0, 11), priority="HIGH")
        outcome = apply_priority_heuristics(existing, request, [])
        assert not outcome.success
        assert outcome.error
        assert [s.id for s in outcome.schedule] == ["old"]

    def test_partial_preemption_is_refused(self):
        existing = [
            make_session("blocker", at(0, 9), at(0, 11), priority="EMERGENCY"),
            make_session("normal", at(0, 9), at(0, 11), therapist_id="emp2", priority="NORMAL"),
        ]
        request = make_session("req", at(0, 9), at(0, 11), therapist_id="emp3", priority="EMERGENCY")
        slots = generate_time_slots(START, horizon_days=1)

        outcome = apply_priority_heuristics(existing, request, slots)

        assert not outcome.success
        assert "blocker" in outcome.error
        assert [s.id for s in outcome.schedule] == ["blocker", "normal"]
        assert not outcome.preempted

    def test_unrelated_overlap_is_left_alone(self):
        elsewhere = make_session("elsewhere", at(0, 9), at(0, 11), room_id="room2", therapist_id="emp2")
        request = make_session("req", at(0, 9), at(0, 11), priority="EMERGENCY")

        outcome = apply_priority_heuristics([elsewhere], request, generate_time_slots(START, horizon_days=1))

        assert outcome.success
        assert not outcome.preempted
        assert [s.id for s in outcome.schedule] == ["elsewhere", "req"]
        assert outcome.schedule[0].start == at(0, 9)

    def test_emergency_displaces_and_relocates(self):
        existing = [make_session("old", at(0, 9), at(0, 11), priority="NORMAL")]
        request = make_session("new", at(0, 9), at(0, 11), priority="EMERGENCY")
        slots = generate_time_slots(START, horizon_days=1)

        outcome = apply_priority_heuristics(existing, request, slots)

        assert outcome.success
        moved = next(s for s in outcome.schedule if s.id == "old")
        assert moved.start == at(0, 11)
        assert moved.rescheduled_from == [at(0, 9), at(0, 11)]
        assert [e["step"] for e in outcome.explanations] == [
            "Priority Assessment", "Preemption Execution", "Rescheduling"
        ]
