"""
Priority Heuristics for urgent and emergency session handling.

Three pieces live here:
1. PriorityQueueManager - pending requests ordered by urgency, FIFO within a tier.
2. PreemptionManager - decides whether a session may displace another and where the
   displaced one can go.
3. apply_priority_heuristics - the one-shot "fit this request in" flow built on both.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models import PriorityLevel, PriorityToken, Session, intervals_overlap
from .explainability import ExplainabilityLog

logger = logging.getLogger(__name__)

# Margin a non-emergency token must clear before it may displace another session
PREEMPTION_BUFFER = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_of(session: Session) -> PriorityToken:
    return session.priority_token or PriorityToken()


# --- Request Queue ---

@dataclass
class QueueEntry:
    id: str
    request: Any
    priority: PriorityToken
    added_at: datetime
    status: str = "pending"
    sequence: int = 0


class PriorityQueueManager:
    """
    Highest priority value first; equal values leave in arrival order.
    """

    def __init__(self):
        self.queue: List[QueueEntry] = []
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self.queue)

    def enqueue(self, request: Any, priority: Optional[PriorityToken] = None) -> str:
        seq = next(self._counter)
        entry = QueueEntry(
            id=f"req_{seq}",
            request=request,
            priority=priority or PriorityToken(),
            added_at=_utcnow(),
            sequence=seq
        )
        self.queue.append(entry)
        self._sort()
        return entry.id

    def _sort(self) -> None:
        # The arrival counter breaks ties, so two requests in the same instant stay FIFO
        self.queue.sort(key=lambda e: (-e.priority.value, e.sequence))

    def dequeue(self) -> Optional[QueueEntry]:
        return self.queue.pop(0) if self.queue else None

    def peek(self) -> Optional[QueueEntry]:
        return self.queue[0] if self.queue else None

    def pending(self) -> List[QueueEntry]:
        return [e for e in self.queue if e.status == "pending"]

    def update_status(self, request_id: str, status: str) -> bool:
        for entry in self.queue:
            if entry.id == request_id:
                entry.status = status
                return True
        return False

    def remove_expired(self, now: Optional[datetime] = None) -> int:
        before = len(self.queue)
        self.queue = [e for e in self.queue if not e.priority.is_expired(now)]
        return before - len(self.queue)


# --- Preemption ---

@dataclass
class PreemptionDecision:
    can_preempt: bool
    reason: str


@dataclass
class PreemptionCandidate:
    session: Session
    reason: str
    priority_diff: int


@dataclass
class Rescheduled:
    session: Session
    original_slot: Tuple[datetime, datetime]
    new_slot: Tuple[datetime, datetime]
    reason: str

    def moved_session(self) -> Session:
        moved = self.session.moved_to(*self.new_slot)
        return moved.model_copy(update={
            "rescheduled_from": list(self.original_slot),
            "rescheduled_reason": self.reason,
        })


@dataclass
class PreemptionOutcome:
    preempted: List[Session] = field(default_factory=list)
    rescheduled: List[Rescheduled] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)


class PreemptionManager:
    """
    Priority comparison and relocation of displaced sessions.
    Every executed preemption is kept in an audit history, and mirrored into the
    explainability log when one is attached.
    """

    def __init__(self, explainer: Optional[ExplainabilityLog] = None):
        self.explainer = explainer
        self._history: List[Dict[str, Any]] = []

    def can_preempt(self, new_session: Session, existing: Session) -> PreemptionDecision:
        new, old = token_of(new_session), token_of(existing)

        if new.level == PriorityLevel.EMERGENCY and old.level != PriorityLevel.EMERGENCY:
            return PreemptionDecision(True, "Emergency session takes precedence")

        if new.value > old.value + PREEMPTION_BUFFER:
            return PreemptionDecision(
                True, f"{new.level.value} priority ({new.value}) exceeds {old.level.value} ({old.value})"
            )

        return PreemptionDecision(False, "Cannot preempt: insufficient priority difference")

    def find_preemptable_sessions(
        self,
        new_session: Session,
        existing_sessions: Sequence[Session],
        required_slots: int = 1
    ) -> List[PreemptionCandidate]:
        """Candidates with the widest priority gap first, capped at `required_slots`."""
        new_value = token_of(new_session).value
        candidates = []
        for existing in existing_sessions:
            decision = self.can_preempt(new_session, existing)
            if decision.can_preempt:
                candidates.append(PreemptionCandidate(
                    session=existing,
                    reason=decision.reason,
                    priority_diff=new_value - token_of(existing).value
                ))

        candidates.sort(key=lambda c: c.priority_diff, reverse=True)
        return candidates[:required_slots]

    def find_alternative_slot(
        self,
        session: Session,
        available_slots: Sequence[Any],
        exclude: Sequence[Any] = ()
    ) -> Optional[Tuple[datetime, datetime]]:
        """
        Earliest slot long enough for `session` that does not touch any excluded interval.
        The returned interval keeps the session's own duration.
        """
        duration = session.duration
        for slot in available_slots:
            if slot.end - slot.start < duration:
                continue
            if any(intervals_overlap(slot.start, slot.end, ex.start, ex.end) for ex in exclude):
                continue
            return slot.start, slot.start + duration
        return None

    def execute_preemption(
        self,
        preempting: Sequence[Session],
        preempted: Sequence[PreemptionCandidate],
        alternative_slots: Sequence[Any]
    ) -> PreemptionOutcome:
        """Relocate each displaced session. Sessions with nowhere to go are reported, not retried."""
        outcome = PreemptionOutcome()

        for candidate in preempted:
            session = candidate.session
            new_slot = self.find_alternative_slot(session, alternative_slots, preempting)

            if new_slot is not None:
                outcome.rescheduled.append(Rescheduled(
                    session=session,
                    original_slot=(session.start, session.end),
                    new_slot=new_slot,
                    reason=candidate.reason
                ))
            else:
                outcome.failed.append({"session": session, "reason": "No alternative slot available"})

            self._record(preempting[0] if preempting else None, session, candidate.reason, new_slot)
            outcome.preempted.append(session)

        return outcome

    def _record(self, preempting: Optional[Session], preempted: Session, reason: str,
                new_slot: Optional[Tuple[datetime, datetime]]) -> None:
        self._history.append({
            "id": f"preempt_{len(self._history) + 1}",
            "timestamp": _utcnow(),
            "preempting_session": preempting.id if preempting else None,
            "preempted_session": preempted.id,
            "reason": reason,
            "new_slot": new_slot,
        })
        logger.info(f"Preempted {preempted.id}: {reason}")

        if self.explainer is not None and preempting is not None:
            start, end = new_slot if new_slot else (None, None)
            self.explainer.log_preemption(preempting, preempted, reason, start, end)

    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)


# --- One-shot Flow ---

@dataclass
class PriorityOutcome:
    success: bool
    schedule: List[Session]
    preempted: List[Session] = field(default_factory=list)
    rescheduled: List[Rescheduled] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    explanations: List[Dict[str, str]] = field(default_factory=list)
    error: Optional[str] = None


def apply_priority_heuristics(
    sessions: Sequence[Session],
    request: Session,
    available_slots: Sequence[Any],
    manager: Optional[PreemptionManager] = None
) -> PriorityOutcome:
    """
    Fit `request` into `sessions`, displacing lower-priority overlaps when its
    priority allows it and relocating them into `available_slots`.
    """
    manager = manager or PreemptionManager()
    token = token_of(request)
    explanations = [{
        "step": "Priority Assessment",
        "detail": f"New request has {token.level.value} priority (value: {token.value})",
        "color": token.color,
    }]

    overlapping = [s for s in sessions if s.conflicts_with(request)]
    if not overlapping:
        explanations.append({
            "step": "Slot Availability",
            "detail": "Requested time slot is available, no preemption needed",
            "color": PriorityLevel.NORMAL.color,
        })
        return PriorityOutcome(success=True, schedule=[*sessions, request], explanations=explanations)

    # Every clash must be displaceable
    preemptable = manager.find_preemptable_sessions(request, overlapping, required_slots=len(overlapping))
    if len(preemptable) < len(overlapping):
        blocking = {s.id for s in overlapping} - {c.session.id for c in preemptable}
        explanations.append({
            "step": "Preemption Check",
            "detail": f"Cannot preempt {len(blocking)} existing session(s) - insufficient priority",
            "color": PriorityLevel.EMERGENCY.color,
        })
        return PriorityOutcome(
            success=False,
            schedule=list(sessions),
            explanations=explanations,
            error=f"Cannot schedule: sessions {', '.join(sorted(blocking))} have equal or higher priority"
        )

    explanations.append({
        "step": "Preemption Execution",
        "detail": f"Preempting {len(preemptable)} session(s) with lower priority",
        "color": PriorityLevel.URGENT.color,
    })
    result = manager.execute_preemption([request], preemptable, available_slots)

    displaced = {c.session.id for c in preemptable}
    schedule = [s for s in sessions if s.id not in displaced]
    schedule.append(request)

    for moved in result.rescheduled:
        schedule.append(moved.moved_session())
        explanations.append({
            "step": "Rescheduling",
            "detail": f'Session "{moved.session.title}" moved to {moved.new_slot[0]:%a %b %d %H:%M}',
            "color": PriorityLevel.HIGH.color,
        })

    for failure in result.failed:
        explanations.append({
            "step": "Rescheduling Failed",
            "detail": f'Could not reschedule "{failure["session"].title}": {failure["reason"]}',
            "color": PriorityLevel.EMERGENCY.color,
        })

    return PriorityOutcome(
        success=True,
        schedule=schedule,
        preempted=result.preempted,
        rescheduled=result.rescheduled,
        failed=result.failed,
        explanations=explanations
    )
