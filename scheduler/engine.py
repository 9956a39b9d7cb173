"""
The Hybrid Therapy Scheduling Engine.

This module implements the core "Orchestrator" logic.
It drives one request through eight strictly sequential phases:
1. Protocol Retrieval - load and sanity-check the workflow.
2. Eligibility Check - contraindications halt the run.
3. Initial Placement - greedy rule-based sweep over the time grid.
4. Genetic Algorithm - optimise therapist, room and slot allocation (optional).
5. Particle Swarm - refine slot ordering and squeeze out overlaps (optional).
6. Priority Handling - stamp the request's priority token on every session.
7. Conflict Resolution - relocate clashes with existing bookings, or ask for preemption.
8. Finalization - ids, status, metrics.

The caller always gets a ScheduleResult back; exceptions never escape generate_schedule.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from models import (
    PriorityLevel,
    PriorityToken,
    ResourcePool,
    Session,
    SessionStatus,
    TherapyProtocol,
    Patient,
    TimeSlot,
    generate_time_slots,
)
from .config import SchedulerConfig
from .constraints import Severity, check_patient_contraindications
from .errors import ConfigurationError, EligibilityError, InternalError, RunCancelledError, SchedulingError
from .explainability import ExplainabilityLog
from .genetic import GeneticOptimizer
from .priority import PreemptionDecision, PreemptionManager
from .state import SchedulingContext
from .swarm import SwarmRefiner

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]

PREEMPTION_REQUESTED = "Preemption requested (requires confirmation)"
MOVED = "Moved to alternative slot"
UNRESOLVED = "Left unresolved (insufficient priority)"


@dataclass
class PendingPreemption:
    """A displacement the run would like to make, held until someone confirms it."""
    preempting: Session
    target: Session
    decision: PreemptionDecision
    candidate_slot: Optional[TimeSlot] = None
    session_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preempting_session": self.preempting.id,
            "target_session": self.target.id,
            "can_preempt": self.decision.can_preempt,
            "reason": self.decision.reason,
            "candidate_slot": self.candidate_slot.model_dump(mode='json') if self.candidate_slot else None,
        }


@dataclass
class ConflictResolution:
    """Outcome for one clash between a new session and an existing booking."""
    conflict_type: str
    message: str
    action: str
    session_index: int
    existing_session_id: str
    alternatives: List[Dict[str, Any]] = field(default_factory=list)
    session_id: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.action == MOVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict": {"type": self.conflict_type, "message": self.message},
            "action": self.action,
            "session": self.session_id,
            "existing_session": self.existing_session_id,
            "alternatives": self.alternatives,
        }


@dataclass
class ScheduleResult:
    success: bool = False
    cancelled: bool = False
    schedule: List[Session] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    explanations: Dict[str, Any] = field(default_factory=dict)
    explanation_summary: str = ""
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    pending_preemptions: List[PendingPreemption] = field(default_factory=list)
    resolutions: List[ConflictResolution] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "schedule": [s.model_dump(mode='json') for s in self.schedule],
            "metrics": self.metrics,
            "explanations": self.explanations,
            "explanation_summary": self.explanation_summary,
            "errors": self.errors,
            "warnings": self.warnings,
            "pending_preemptions": [p.to_dict() for p in self.pending_preemptions],
            "resolutions": [r.to_dict() for r in self.resolutions],
        }


class HybridScheduler:
    """
    Main scheduling engine.
    Ingests Demand (protocol, patient, priority) and Supply (resources, existing sessions),
    outputs a ScheduleResult.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None, explainer: Optional[ExplainabilityLog] = None):
        self.config = config or SchedulerConfig()
        self.explainer = explainer or ExplainabilityLog()
        self.on_progress: Optional[ProgressCallback] = None
        self._phase = "protocol"

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        self.on_progress = callback

    def generate_schedule(
        self,
        protocol: TherapyProtocol,
        patient: Patient,
        priority_token: Optional[PriorityToken] = None,
        resources: Optional[ResourcePool] = None,
        existing_sessions: Sequence[Session] = (),
        config: Optional[SchedulerConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Any = None
    ) -> ScheduleResult:
        """
        Run the eight-phase pipeline. `cancel_event` is anything with an `is_set()` method
        (typically a threading.Event); it is polled between phases, generations and iterations.
        """
        config = config or self.config
        callback = on_progress or self.on_progress
        resources = resources or ResourcePool()
        self.explainer.clear()
        self._phase = "protocol"
        result = ScheduleResult()

        def should_stop() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        logger.info(f"Scheduling '{protocol.name}' for patient {patient.id}")

        try:
            # 1. Protocol Retrieval
            phase_id = self._begin("protocol", "Protocol Retrieval",
                                   "Loading therapy protocol and validating structure", should_stop)
            workflow = protocol.ordered_workflow()
            if not workflow:
                raise ConfigurationError(f'Therapy "{protocol.name}" has no defined workflow', phase="protocol")
            self.explainer.end_phase(phase_id, f"Loaded {len(workflow)} workflow steps")
            self._report(callback, "protocol", 10, "Protocol loaded")

            # 2. Eligibility Check
            phase_id = self._begin("eligibility", "Eligibility Check",
                                   "Validating patient eligibility against contraindications", should_stop)
            eligibility = check_patient_contraindications(patient, protocol)
            if not eligibility.valid:
                messages = [v.message for v in eligibility.critical]
                self.explainer.log_constraint(
                    "Contraindication",
                    Severity.CRITICAL.value,
                    "Blocked scheduling",
                    f"Patient has contraindications: {', '.join(messages)}",
                    original_issue="; ".join(messages)
                )
                self.explainer.end_phase(phase_id, "Patient not eligible")
                raise EligibilityError(f"Patient not eligible: {', '.join(messages)}", eligibility.violations)
            self.explainer.end_phase(phase_id, "Patient eligible for therapy")
            self._report(callback, "eligibility", 15, "Eligibility confirmed")

            # Shared, read-only inputs for every later phase
            context = SchedulingContext.build(
                therapy=protocol,
                patient=patient,
                therapists=resources.therapists,
                rooms=resources.rooms,
                time_slots=self._time_slots(config),
                existing_sessions=existing_sessions,
                inventory=resources.inventory,
                material_requirements=config.material_requirements,
                min_gap_hours=config.min_gap_hours,
                max_gap_hours=config.max_gap_hours,
            )
            rng = random.Random(config.seed)

            # 3. Initial Placement
            phase_id = self._begin("initial", "Initial Placement",
                                   "Creating initial schedule using rule-based logic", should_stop)
            if not context.therapists or not context.rooms:
                raise ConfigurationError("At least one therapist and one room are required", phase="initial")
            if not context.time_slots:
                raise ConfigurationError("Scheduling horizon contains no working slots", phase="initial")
            schedule, skipped = self.create_initial_schedule(context)
            for session in schedule:
                self.explainer.log_placement(session, "Initial rule-based placement")
            for step in skipped:
                self.explainer.log_constraint(
                    "Placement",
                    Severity.WARNING.value,
                    "Skipped workflow step",
                    "No conflict-free slot in the scheduling horizon",
                    original_issue=f'Step {step.step} "{step.action}"'
                )
                result.warnings.append({
                    "phase": "initial",
                    "step_id": step.id,
                    "message": f'No conflict-free slot found for step {step.step} "{step.action}"',
                })
                logger.warning(f"Step {step.id} ({step.action}) could not be placed")
            self.explainer.end_phase(phase_id, f"Created {len(schedule)} initial sessions")
            self._report(callback, "initial", 25, "Initial schedule created")

            # 4. Genetic Algorithm
            ga_result = None
            if config.enable_ga:
                phase_id = self._begin("genetic_algorithm", "Genetic Algorithm",
                                       "Optimizing therapist, room, and material allocation", should_stop)
                ga = GeneticOptimizer(config.ga, rng, config.parallel_workers, callback, should_stop)
                ga_result = ga.run(context)
                if ga_result.cancelled:
                    self.explainer.end_phase(phase_id, "Cancelled")
                    raise RunCancelledError("Run cancelled", phase="genetic_algorithm")
                schedule = ga.to_schedule()

                self.explainer.log_optimization("Genetic Algorithm", ga_result.initial_fitness, ga_result.best_fitness)
                self.explainer.end_phase(
                    phase_id,
                    f"GA ran {ga_result.generations_run} generations, fitness: {ga_result.best_fitness:.1f}"
                )
                self._report(callback, "genetic_algorithm", 50, "GA optimization complete")

            # 5. Particle Swarm
            pso_result = None
            if config.enable_pso and schedule:
                phase_id = self._begin("particle_swarm", "Particle Swarm Optimization",
                                       "Refining session ordering and reducing conflicts", should_stop)
                pso = SwarmRefiner(config.pso, rng, config.parallel_workers, callback, should_stop)
                pso_result = pso.run(schedule, context)
                if pso_result.cancelled:
                    self.explainer.end_phase(phase_id, "Cancelled")
                    raise RunCancelledError("Run cancelled", phase="particle_swarm")
                schedule = pso.apply_best_solution()

                self.explainer.log_optimization(
                    "Particle Swarm Optimization", pso_result.initial_fitness, pso_result.global_best_fitness
                )
                self.explainer.end_phase(
                    phase_id,
                    f"PSO ran {pso_result.iterations_run} iterations, fitness: {pso_result.global_best_fitness:.1f}"
                )
                self._report(callback, "particle_swarm", 70, "PSO refinement complete")

            # 6. Priority Handling
            phase_id = self._begin("priority", "Priority Handling",
                                   "Applying priority token for scheduling precedence", should_stop)
            token = priority_token or PriorityToken()
            schedule = [s.model_copy(update={"priority_token": token}) for s in schedule]
            self.explainer.end_phase(phase_id, f"Applied {token.level.value} priority to {len(schedule)} sessions")
            self._report(callback, "priority", 80, "Priority applied")

            # 7. Conflict Resolution
            phase_id = self._begin("conflict_resolution", "Conflict Resolution",
                                   "Detecting and resolving scheduling conflicts", should_stop)
            schedule, resolutions, pending = self.resolve_conflicts(schedule, context, token)
            for resolution in resolutions:
                self.explainer.log_conflict_resolution(
                    resolution.conflict_type, resolution.message, resolution.action, resolution.alternatives
                )
            self.explainer.end_phase(
                phase_id,
                f"Resolved {sum(1 for r in resolutions if r.resolved)} of {len(resolutions)} conflicts"
            )
            self._report(callback, "conflict_resolution", 90, "Conflicts resolved")

            # 8. Finalization
            phase_id = self._begin("finalization", "Finalization", "Preparing final schedule output", should_stop)
            created_at = datetime.now(timezone.utc)
            final = [
                s.model_copy(update={
                    "id": f"session_{uuid4().hex[:12]}",
                    "status": SessionStatus.SCHEDULED,
                    "created_at": created_at,
                })
                for s in schedule
            ]
            # Pending preemptions point at the finalized sessions
            pending = [replace(p, preempting=final[p.session_index]) for p in pending]
            for resolution in resolutions:
                resolution.session_id = final[resolution.session_index].id

            result.schedule = final
            result.resolutions = resolutions
            result.pending_preemptions = pending
            result.metrics = {
                "total_sessions": len(final),
                "ga_generations": ga_result.generations_run if ga_result else 0,
                "ga_fitness": ga_result.best_fitness if ga_result else 0,
                "pso_iterations": pso_result.iterations_run if pso_result else 0,
                "pso_fitness": pso_result.global_best_fitness if pso_result else 0,
                "conflicts_resolved": sum(1 for r in resolutions if r.resolved),
                "conflicts_unresolved": sum(1 for r in resolutions if not r.resolved),
                "pending_preemptions": len(pending),
                "unplaced_steps": len(skipped),
                "priority": token.level.value,
                "constraint_summary": context.evaluate(final).summary if final else {},
            }
            result.success = True

            self.explainer.end_phase(phase_id, f"Schedule finalized with {len(final)} sessions")
            self._report(callback, "complete", 100, "Schedule generation complete")
            logger.info(f"Schedule ready: {len(final)} sessions, {len(pending)} pending preemptions")

        except RunCancelledError as e:
            result.cancelled = True
            result.errors.append({"phase": e.phase, "message": str(e)})
            logger.info(f"Run cancelled during {e.phase}")
        except EligibilityError as e:
            result.errors.append({
                "phase": e.phase,
                "message": str(e),
                "violations": [v.to_dict() for v in e.violations],
            })
            logger.info(f"Run halted: {e}")
        except SchedulingError as e:
            result.errors.append({"phase": e.phase, "message": str(e)})
            logger.warning(f"Run halted in {e.phase}: {e}")
        except Exception as e:
            error = InternalError(f"{type(e).__name__}: {e}", phase=self._phase)
            result.errors.append({"phase": error.phase, "message": str(error)})
            logger.exception(f"Unexpected failure during {self._phase}")

        if not result.success:
            result.schedule = []

        if config.enable_explainability:
            result.explanations = self.explainer.generate_report()
            result.explanation_summary = self.explainer.generate_nl_summary()

        return result

    # --- Phases ---

    def _begin(self, key: str, name: str, description: str, should_stop: Callable[[], bool]) -> str:
        if should_stop():
            raise RunCancelledError("Run cancelled", phase=key)
        self._phase = key
        logger.info(f"Phase: {name}")
        return self.explainer.start_phase(name, description)

    def _report(self, callback: Optional[ProgressCallback], phase: str, percent: float, message: str) -> None:
        if callback:
            callback({"phase": phase, "progress": percent, "message": message})

    @staticmethod
    def _time_slots(config: SchedulerConfig) -> List[TimeSlot]:
        tz = config.tz
        start = config.start_date or datetime.now(tz).date()
        return generate_time_slots(
            start_date=start,
            horizon_days=config.scheduling_horizon_days,
            working_hours_start=config.working_hours_start,
            working_hours_end=config.working_hours_end,
            slot_duration_hours=config.time_slot_duration_hours,
            tz=tz
        )

    def create_initial_schedule(self, context: SchedulingContext):
        """
        Greedy sweep: each workflow step takes the next slot (after the previous step's)
        that does not clash with an existing booking for the chosen therapist or room.
        Returns (sessions, skipped_steps).
        """
        therapist = next(iter(context.skilled_therapists() or context.therapists), None)
        room = next(iter(context.rooms), None)
        therapist_id = therapist.id if therapist else None
        room_id = room.id if room else None

        sessions: List[Session] = []
        skipped = []
        cursor = 0

        for step in context.workflow:
            placed = None
            while cursor < context.num_slots and placed is None:
                candidate = context.make_session(step, therapist_id, room_id, cursor,
                                                 session_id=f"init_{step.id}")
                if not any(candidate.conflicts_with(e) for e in context.existing_sessions):
                    placed = candidate
                cursor += 1

            if placed is None:
                skipped.append(step)
            else:
                sessions.append(placed)

        return sessions, skipped

    def resolve_conflicts(self, sessions: List[Session], context: SchedulingContext, token: PriorityToken):
        """
        Move every new session that clashes with an existing booking to the first slot in the
        horizon that is free for its therapist and room. With no free slot, URGENT and above ask
        for preemption; lower priorities leave the clash flagged.
        Returns (schedule, resolutions, pending_preemptions).
        """
        schedule = list(sessions)
        resolutions: List[ConflictResolution] = []
        pending: List[PendingPreemption] = []
        manager = PreemptionManager()

        for i in range(len(schedule)):
            session = schedule[i]
            conflicts = [e for e in context.existing_sessions if session.conflicts_with(e)]
            if not conflicts:
                continue

            others = schedule[:i] + schedule[i + 1:]
            alternative = self.find_alternative_slot(session, context, others)

            if alternative is not None:
                index, slot = alternative
                schedule[i] = session.moved_to(slot.start, slot.end, index)
                first = conflicts[0]
                resolutions.append(ConflictResolution(
                    conflict_type=self._conflict_type(session, first),
                    message=f"Conflict with existing session at {first.start:%Y-%m-%d %H:%M}",
                    action=MOVED,
                    session_index=i,
                    existing_session_id=first.id,
                    alternatives=[{"slot_index": index, "start": slot.start.isoformat(), "end": slot.end.isoformat()}]
                ))
                continue

            for existing in conflicts:
                conflict_type = self._conflict_type(session, existing)
                message = f"Conflict with existing session at {existing.start:%Y-%m-%d %H:%M}"

                if token.value >= PriorityLevel.URGENT.score:
                    decision = manager.can_preempt(session, existing)
                    pending.append(PendingPreemption(
                        preempting=session,
                        target=existing,
                        decision=decision,
                        candidate_slot=self._relocation_slot(existing, session, context, schedule, manager),
                        session_index=i
                    ))
                    action = PREEMPTION_REQUESTED
                else:
                    action = UNRESOLVED
                    logger.warning(f"Unresolved {conflict_type.lower()} conflict: {session.action} vs {existing.id}")

                resolutions.append(ConflictResolution(
                    conflict_type=conflict_type,
                    message=message,
                    action=action,
                    session_index=i,
                    existing_session_id=existing.id
                ))

        return schedule, resolutions, pending

    @staticmethod
    def _conflict_type(session: Session, existing: Session) -> str:
        return "Room" if session.room_id is not None and session.room_id == existing.room_id else "Therapist"

    @staticmethod
    def find_alternative_slot(session: Session, context: SchedulingContext, others: Sequence[Session]):
        """First (index, slot) in the horizon where neither existing nor other new sessions clash."""
        for index, slot in enumerate(context.time_slots):
            candidate = session.moved_to(slot.start, slot.end, index)
            if any(candidate.conflicts_with(e) for e in context.existing_sessions):
                continue
            if any(candidate.conflicts_with(o) for o in others):
                continue
            return index, slot
        return None

    @staticmethod
    def _relocation_slot(target: Session, preempting: Session, context: SchedulingContext,
                         schedule: Sequence[Session], manager: PreemptionManager) -> Optional[TimeSlot]:
        """Where the preempted session could go if the preemption is confirmed."""
        busy = [e for e in context.existing_sessions if e.id != target.id] + list(schedule)
        free = [
            slot for slot in context.time_slots
            if not any(target.moved_to(slot.start, slot.end).conflicts_with(b) for b in busy)
        ]
        found = manager.find_alternative_slot(target, free, exclude=[preempting])
        if found is None:
            return None
        return next(slot for slot in free if slot.start == found[0])
