"""
Scheduling Service.

The boundary between the scheduling core and whatever stores protocols, patients,
resources and sessions. The core never writes anywhere itself: this service looks
inputs up, runs the orchestrator, and hands a successful schedule to the repository
in one commit. Every run leaves an audit entry, successful or not.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from models import (
    Patient,
    PriorityToken,
    ResourcePool,
    Session,
    SessionStatus,
    TherapyProtocol,
    ensure_aware,
)
from .config import SchedulerConfig
from .constraints import validate_room_availability
from .engine import HybridScheduler, PendingPreemption, ScheduleResult
from .errors import ConfigurationError, SchedulingError, UnresolvedConflictError
from .explainability import ExplainabilityLog
from .priority import PreemptionCandidate, PreemptionManager, token_of

logger = logging.getLogger(__name__)


class SchedulingRepository(Protocol):
    """Storage the service reads inputs from and commits schedules to."""

    def get_protocol(self, therapy_id: str) -> Optional[TherapyProtocol]: ...

    def get_patient(self, patient_id: str) -> Optional[Patient]: ...

    def get_resources(self) -> ResourcePool: ...

    def get_sessions(self) -> List[Session]: ...

    def commit_sessions(self, sessions: Sequence[Session]) -> None: ...

    def append_audit(self, entry: Dict[str, Any]) -> None: ...

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def update_session(self, session: Session) -> None: ...


class InMemoryRepository:
    """Dict-backed repository, for scripts and tests."""

    def __init__(
        self,
        protocols: Sequence[TherapyProtocol] = (),
        patients: Sequence[Patient] = (),
        resources: Optional[ResourcePool] = None,
        sessions: Sequence[Session] = ()
    ):
        self.protocols = {p.id: p for p in protocols}
        self.patients = {p.id: p for p in patients}
        self.resources = resources or ResourcePool()
        self.sessions: Dict[str, Session] = {s.id: s for s in sessions}
        self.audit_log: List[Dict[str, Any]] = []

    def get_protocol(self, therapy_id: str) -> Optional[TherapyProtocol]:
        return self.protocols.get(therapy_id)

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        return self.patients.get(patient_id)

    def get_resources(self) -> ResourcePool:
        return self.resources

    def get_sessions(self) -> List[Session]:
        return list(self.sessions.values())

    def commit_sessions(self, sessions: Sequence[Session]) -> None:
        for session in sessions:
            self.sessions[session.id] = session

    def append_audit(self, entry: Dict[str, Any]) -> None:
        self.audit_log.append(entry)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def update_session(self, session: Session) -> None:
        if session.id not in self.sessions:
            raise KeyError(session.id)
        self.sessions[session.id] = session


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulingService:
    """
    Runs scheduling requests against a repository and owns the post-run flows
    (manual reschedule, status changes, confirmed preemptions).
    """

    def __init__(self, repository: SchedulingRepository, config: Optional[SchedulerConfig] = None):
        self.repository = repository
        self.config = config or SchedulerConfig()
        # Manual actions outside a run are explained here; each run has its own log
        self.explainer = ExplainabilityLog()

    def schedule(
        self,
        therapy_id: str,
        patient_id: str,
        priority: Optional[PriorityToken] = None,
        config: Optional[SchedulerConfig] = None,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
        cancel_event: Any = None
    ) -> ScheduleResult:
        protocol = self.repository.get_protocol(therapy_id)
        if protocol is None:
            raise ConfigurationError(f"Unknown therapy: {therapy_id}", phase="protocol")
        patient = self.repository.get_patient(patient_id)
        if patient is None:
            raise ConfigurationError(f"Unknown patient: {patient_id}", phase="protocol")

        scheduler = HybridScheduler(config or self.config)
        result = scheduler.generate_schedule(
            protocol,
            patient,
            priority_token=priority,
            resources=self.repository.get_resources(),
            existing_sessions=self.repository.get_sessions(),
            on_progress=on_progress,
            cancel_event=cancel_event
        )

        committed = result.success and not result.cancelled
        if committed:
            self.repository.commit_sessions(result.schedule)
            logger.info(f"Committed {len(result.schedule)} sessions for patient {patient_id}")

        self.repository.append_audit(self._audit_entry(therapy_id, patient_id, result, committed))
        return result

    @staticmethod
    def _audit_entry(therapy_id: str, patient_id: str, result: ScheduleResult, committed: bool) -> Dict[str, Any]:
        if result.cancelled:
            action = "schedule_cancelled"
        elif result.success:
            action = "schedule_generated"
        else:
            action = "schedule_failed"

        return {
            "timestamp": _utcnow().isoformat(),
            "action": action,
            "therapy_id": therapy_id,
            "patient_id": patient_id,
            "committed": committed,
            "session_ids": [s.id for s in result.schedule] if committed else [],
            "summary": result.explanations.get("summary", {}),
            "metrics": result.metrics,
            "errors": result.errors,
            "pending_preemptions": [p.to_dict() for p in result.pending_preemptions],
        }

    # --- Post-run Flows ---

    def _require(self, session_id: str) -> Session:
        session = self.repository.get_session(session_id)
        if session is None:
            raise SchedulingError(f"Unknown session: {session_id}", phase="reschedule")
        return session

    def reschedule_session(self, session_id: str, new_start: datetime, new_end: datetime, reason: str = "") -> Session:
        """Move a committed session by hand. Refused if the room is taken at the new time."""
        session = self._require(session_id)
        moved = session.moved_to(ensure_aware(new_start), ensure_aware(new_end)).model_copy(update={
            "rescheduled_from": [session.start, session.end],
            "rescheduled_reason": reason,
        })

        others = [s for s in self.repository.get_sessions() if s.id != session_id]
        check = validate_room_availability([moved], others)
        if not check.valid:
            raise UnresolvedConflictError(check.violations[0].message, conflict=check.violations[0], phase="reschedule")

        self.repository.update_session(moved)
        self.explainer.log_manual(f"Rescheduled {session_id}", {
            "from": session.start.isoformat(),
            "to": moved.start.isoformat(),
            "reason": reason,
        })
        self.repository.append_audit({
            "timestamp": _utcnow().isoformat(),
            "action": "session_rescheduled",
            "session_id": session_id,
            "reason": reason,
        })
        return moved

    def update_session_status(self, session_id: str, status) -> Session:
        session = self._require(session_id)
        updated = session.model_copy(update={"status": SessionStatus(status)})
        self.repository.update_session(updated)
        self.explainer.log_manual(f"Status of {session_id} set to {updated.status.value}")
        return updated

    def confirm_preemption(self, request: PendingPreemption) -> Session:
        """
        Execute a preemption the orchestrator asked for: the target moves to the
        candidate slot and the move is logged. Returns the relocated target.
        """
        target = self._require(request.target.id)
        preempting = self.repository.get_session(request.preempting.id) or request.preempting

        manager = PreemptionManager(self.explainer)
        decision = manager.can_preempt(preempting, target)
        if not decision.can_preempt:
            raise SchedulingError(decision.reason, phase="preemption")
        if request.candidate_slot is None:
            raise UnresolvedConflictError(
                f"No relocation slot for session {target.id}", conflict=request.to_dict(), phase="preemption"
            )

        outcome = manager.execute_preemption(
            [preempting],
            [PreemptionCandidate(target, decision.reason, token_of(preempting).value - token_of(target).value)],
            [request.candidate_slot]
        )
        if not outcome.rescheduled:
            raise UnresolvedConflictError(outcome.failed[0]["reason"], conflict=request.to_dict(), phase="preemption")

        moved = outcome.rescheduled[0].moved_session()
        self.repository.update_session(moved)
        self.repository.append_audit({
            "timestamp": _utcnow().isoformat(),
            "action": "preemption_confirmed",
            "preempting_session": preempting.id,
            "preempted_session": target.id,
            "reason": decision.reason,
            "history": manager.history(),
        })
        return moved
