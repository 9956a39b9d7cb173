"""
Fitness Scoring Engine for the Hybrid Therapy Scheduler.

This module determines the 'Quality' of a candidate schedule.
Unlike hard constraints (binary Yes/No), this provides a gradient (0.0 - 100.0)
used by the genetic optimizer (whole chromosomes) and the swarm refiner
(time-slot position vectors).
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, TypeVar

from models import Session
from .state import SchedulingContext

T = TypeVar("T")
R = TypeVar("R")

MIN_FITNESS = 0.0
MAX_FITNESS = 100.0


def clamp_fitness(value: float) -> float:
    return max(MIN_FITNESS, min(MAX_FITNESS, value))


def evaluate_all(fn: Callable[[T], R], items: Sequence[T], workers: int = 1) -> List[R]:
    """
    Map `fn` over `items`, in a thread pool when workers > 1.
    Results keep the input order, so callers can zip them back onto their members.
    """
    if workers <= 1 or len(items) < 2:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(fn, items))


class ScheduleScorer:
    """
    Evaluates candidate schedules against a fixed SchedulingContext.
    Stateless apart from the context, so one instance can be shared across threads.
    """

    # GA weights
    CRITICAL_PENALTY = 25.0
    WARNING_PENALTY = 5.0
    SKILL_MATCH_BONUS = 5.0
    SKILL_MATCH_CAP = 15.0
    SINGLE_ROOM_BONUS = 10.0
    WIDE_GAP_SLOTS = 4
    WIDE_GAP_PENALTY = 3.0

    # PSO weights
    ROOM_OVERLAP_PENALTY = 20.0
    THERAPIST_OVERLAP_PENALTY = 15.0
    EXISTING_OVERLAP_PENALTY = 25.0
    SEQUENCE_WEIGHT = 10.0
    COMPACTNESS_WEIGHT = 5.0
    UTILIZATION_WEIGHT = 3.0

    def __init__(self, context: SchedulingContext):
        self.context = context
        self._therapists = {t.id: t for t in context.therapists}

    # --- Genetic Algorithm ---

    def chromosome_fitness(self, genes) -> float:
        """
        Master scoring function for one GA candidate. Returns 0-100.
        """
        sessions = [
            self.context.make_session(step, g.therapist_id, g.room_id, g.time_slot_index)
            for step, g in zip(self.context.workflow, genes)
        ]
        report = self.context.evaluate(sessions)

        score = MAX_FITNESS

        # 1. Constraint penalties
        score -= report.summary["critical"] * self.CRITICAL_PENALTY
        score -= report.summary["warnings"] * self.WARNING_PENALTY

        # 2. Skilled staff (+5 per gene, capped)
        score += self._score_skill_match(genes)

        # 3. Single room for the whole course
        if len({g.room_id for g in genes}) == 1:
            score += self.SINGLE_ROOM_BONUS

        # 4. Long idle stretches between steps
        score -= self._score_slot_gaps(genes)

        return clamp_fitness(score)

    def _score_skill_match(self, genes) -> float:
        bonus = 0.0
        therapy_name = self.context.therapy.name
        for gene in genes:
            therapist = self._therapists.get(gene.therapist_id)
            if therapist is not None and therapist.has_skill_for(therapy_name):
                bonus += self.SKILL_MATCH_BONUS
        return min(bonus, self.SKILL_MATCH_CAP)

    def _score_slot_gaps(self, genes) -> float:
        indices = sorted(g.time_slot_index for g in genes)
        wide = sum(1 for a, b in zip(indices, indices[1:]) if b - a > self.WIDE_GAP_SLOTS)
        return wide * self.WIDE_GAP_PENALTY

    # --- Particle Swarm ---

    def position_fitness(self, sessions: Sequence[Session], position: Sequence[int]) -> float:
        """
        Score a vector of time-slot indices applied to `sessions`. Returns 0-100.
        """
        placed = self.place(sessions, position)
        score = MAX_FITNESS

        score -= self.count_room_conflicts(placed) * self.ROOM_OVERLAP_PENALTY
        score -= self.count_therapist_conflicts(placed) * self.THERAPIST_OVERLAP_PENALTY
        score -= self.count_existing_conflicts(placed) * self.EXISTING_OVERLAP_PENALTY

        score += self.sequence_score(position) * self.SEQUENCE_WEIGHT
        score += self.compactness_score(position) * self.COMPACTNESS_WEIGHT
        score += self.utilization_score(placed) * self.UTILIZATION_WEIGHT

        return clamp_fitness(score)

    def place(self, sessions: Sequence[Session], position: Sequence[int]) -> List[Session]:
        """Copies of `sessions` moved onto the slots named by `position`."""
        slots = self.context.time_slots
        return [
            s.moved_to(slots[idx].start, slots[idx].end, idx)
            for s, idx in zip(sessions, position)
        ]

    @staticmethod
    def _count_pairs(sessions: Sequence[Session], key: str) -> int:
        conflicts = 0
        for i, a in enumerate(sessions):
            for b in sessions[i + 1:]:
                if getattr(a, key) is not None and getattr(a, key) == getattr(b, key) and a.overlaps(b):
                    conflicts += 1
        return conflicts

    def count_room_conflicts(self, sessions: Sequence[Session]) -> int:
        return self._count_pairs(sessions, "room_id")

    def count_therapist_conflicts(self, sessions: Sequence[Session]) -> int:
        return self._count_pairs(sessions, "therapist_id")

    def count_existing_conflicts(self, sessions: Sequence[Session]) -> int:
        return sum(
            1
            for new in sessions
            for existing in self.context.existing_sessions
            if new.shares_resource(existing) and new.overlaps(existing)
        )

    @staticmethod
    def sequence_score(position: Sequence[int]) -> float:
        """Fraction of adjacent dimensions that keep workflow order."""
        if len(position) < 2:
            return 1.0
        ordered = sum(1 for a, b in zip(position, position[1:]) if b >= a)
        return ordered / (len(position) - 1)

    @staticmethod
    def compactness_score(position: Sequence[int]) -> float:
        """1.0 when the sessions sit in consecutive slots, falling as the span widens."""
        if len(position) < 2:
            return 1.0
        span = max(position) - min(position)
        ideal_span = len(position) - 1
        if span == 0:
            return 1.0
        return max(0.0, 1 - (span - ideal_span) / span)

    @staticmethod
    def utilization_score(sessions: Sequence[Session]) -> float:
        """Prefer packing sessions into fewer rooms."""
        if not sessions:
            return 0.0
        rooms = {s.room_id for s in sessions}
        return len(sessions) / (len(rooms) * 2)
