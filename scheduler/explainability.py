"""
Explainability Log for scheduling decisions.

An append-only ledger of phases and decisions. Each domain event has a dedicated
`log_*` method which also bumps the matching metrics counter, so the report and
the narrative summary are fully determined by what was logged.
One log belongs to one Orchestrator and is cleared at the start of every run.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from models import Session


class DecisionType(str, Enum):
    PLACEMENT = "PLACEMENT"  # initial session placement
    OPTIMIZATION = "OPTIMIZATION"  # GA / PSO improvements
    CONSTRAINT = "CONSTRAINT"  # constraint enforcement
    PREEMPTION = "PREEMPTION"  # priority-based displacement
    CONFLICT = "CONFLICT"  # conflict resolution
    MANUAL = "MANUAL"  # operator override


METRIC_KEYS = (
    "total_decisions",
    "constraint_violations_resolved",
    "conflicts_handled",
    "preemptions",
    "optimization_improvements",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_slot(start: Optional[datetime], end: Optional[datetime]) -> str:
    if start is None or end is None:
        return "Unknown"
    return f"{start:%Y-%m-%d %H:%M} - {end:%H:%M}"


def summarize_session(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title or session.action,
        "type": session.type,
        "therapist": session.therapist_id,
        "room": session.room_id,
        "priority": session.priority_token.level.value if session.priority_token else "NORMAL",
    }


@dataclass
class ExplanationEntry:
    id: str
    type: DecisionType
    summary: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_readable(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "summary": self.summary,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }


@dataclass
class Phase:
    id: str
    name: str
    description: str
    start_time: datetime
    end_time: Optional[datetime] = None
    summary: Optional[str] = None
    entry_ids: List[str] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)


class ExplainabilityLog:
    """
    Phase-scoped decision ledger with metrics and a templated narrative.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock
        self.clear()

    def clear(self) -> None:
        """Reset for a new scheduling run."""
        self.entries: List[ExplanationEntry] = []
        self.phases: List[Phase] = []
        self.metrics: Dict[str, int] = {key: 0 for key in METRIC_KEYS}
        self._ids = itertools.count(1)

    # --- Phases ---

    def start_phase(self, name: str, description: str = "") -> str:
        phase = Phase(
            id=f"phase_{next(self._ids)}",
            name=name,
            description=description,
            start_time=self.clock()
        )
        self.phases.append(phase)
        return phase.id

    def end_phase(self, phase_id: str, summary: Optional[str] = None) -> None:
        phase = next((p for p in self.phases if p.id == phase_id), None)
        if phase is None or not phase.is_open:
            return
        phase.end_time = self.clock()
        if summary:
            phase.summary = summary

    @property
    def current_phase(self) -> Optional[Phase]:
        if self.phases and self.phases[-1].is_open:
            return self.phases[-1]
        return None

    def _add(self, decision_type: DecisionType, summary: str, details: Dict[str, Any], *counters: str) -> ExplanationEntry:
        entry = ExplanationEntry(
            id=f"exp_{next(self._ids)}",
            type=decision_type,
            summary=summary,
            details=details,
            timestamp=self.clock()
        )
        self.entries.append(entry)

        phase = self.current_phase
        if phase is not None:
            phase.entry_ids.append(entry.id)

        self.metrics["total_decisions"] += 1
        for counter in counters:
            self.metrics[counter] += 1
        return entry

    # --- Domain Events ---

    def log_placement(self, session: Session, reason: str) -> ExplanationEntry:
        slot = format_slot(session.start, session.end)
        return self._add(
            DecisionType.PLACEMENT,
            f'Placed "{session.action or session.title}" at {slot}',
            {
                "session": summarize_session(session),
                "slot": slot,
                "reason": reason,
                "factors": [
                    {"factor": "Therapist Match", "value": "Assigned" if session.therapist_id else "TBD"},
                    {"factor": "Room Availability", "value": "Reserved" if session.room_id else "TBD"},
                    {"factor": "Time Slot", "value": slot},
                    {"factor": "Priority", "value": summarize_session(session)["priority"]},
                ],
            },
        )

    def log_optimization(self, phase: str, before: float, after: float) -> ExplanationEntry:
        improvement = after - before
        return self._add(
            DecisionType.OPTIMIZATION,
            f"{phase} improved fitness from {before:.1f} to {after:.1f}",
            {
                "phase": phase,
                "before_fitness": before,
                "after_fitness": after,
                "improvement": round(improvement, 2),
                "improvement_percent": f"{improvement / max(before, 1) * 100:.1f}%",
            },
            "optimization_improvements",
        )

    def log_constraint(self, constraint_type: str, severity: str, action: str, outcome: str,
                       original_issue: str = "") -> ExplanationEntry:
        return self._add(
            DecisionType.CONSTRAINT,
            f"{action} for {constraint_type}: {outcome}",
            {
                "constraint_type": constraint_type,
                "severity": severity,
                "original_issue": original_issue,
                "action_taken": action,
                "outcome": outcome,
            },
            "constraint_violations_resolved",
        )

    def log_preemption(self, preempting: Session, preempted: Session, reason: str,
                       new_start: Optional[datetime] = None, new_end: Optional[datetime] = None) -> ExplanationEntry:
        relocated = new_start is not None and new_end is not None
        return self._add(
            DecisionType.PREEMPTION,
            f'"{preempting.title or preempting.action}" preempted "{preempted.title or preempted.action}"',
            {
                "preempting_session": summarize_session(preempting),
                "preempted_session": summarize_session(preempted),
                "reason": reason,
                "result": "Rescheduled successfully" if relocated else "No alternative slot available",
                "new_slot": format_slot(new_start, new_end) if relocated else "N/A",
            },
            "preemptions",
        )

    def log_conflict_resolution(self, conflict_type: str, message: str, resolution: str,
                                alternatives: Sequence[Dict[str, Any]] = ()) -> ExplanationEntry:
        return self._add(
            DecisionType.CONFLICT,
            f"Resolved conflict: {conflict_type}" if alternatives else f"Conflict: {conflict_type} - {resolution}",
            {
                "conflict_type": conflict_type,
                "conflict_details": message,
                "resolution": resolution,
                "alternatives_considered": len(alternatives),
                "chosen_alternative": alternatives[0] if alternatives else None,
            },
            "conflicts_handled",
        )

    def log_manual(self, action: str, details: Optional[Dict[str, Any]] = None) -> ExplanationEntry:
        return self._add(DecisionType.MANUAL, action, dict(details or {}))

    # --- Queries ---

    def get_by_type(self, decision_type: DecisionType) -> List[ExplanationEntry]:
        return [e for e in self.entries if e.type == decision_type]

    def get_recent(self, count: int = 10) -> List[Dict[str, Any]]:
        return [e.to_readable() for e in self.entries[-count:]] if count > 0 else []

    # --- Reporting ---

    def generate_report(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_phases": len(self.phases),
                "total_decisions": self.metrics["total_decisions"],
                "constraints_resolved": self.metrics["constraint_violations_resolved"],
                "conflicts_handled": self.metrics["conflicts_handled"],
                "preemptions": self.metrics["preemptions"],
                "optimizations": self.metrics["optimization_improvements"],
            },
            "phases": [
                {
                    "name": p.name,
                    "description": p.description,
                    "duration": f"{p.duration_ms}ms" if p.duration_ms is not None else "In progress",
                    "summary": p.summary,
                    "decision_count": len(p.entry_ids),
                }
                for p in self.phases
            ],
            "timeline": [e.to_readable() for e in self.entries],
            "metrics": dict(self.metrics),
        }

    def generate_nl_summary(self) -> str:
        """Templated narrative of the report. Same log contents, same text."""
        report = self.generate_report()
        summary = report["summary"]
        lines = [
            "## Scheduling Decision Summary",
            "",
            f"The scheduling process completed in **{summary['total_phases']} phases** "
            f"with **{summary['total_decisions']} decisions**.",
            "",
        ]

        if summary["constraints_resolved"]:
            lines.append(f"- Resolved **{summary['constraints_resolved']}** constraint violations")
        if summary["conflicts_handled"]:
            lines.append(f"- Handled **{summary['conflicts_handled']}** scheduling conflicts")
        if summary["preemptions"]:
            lines.append(f"- Performed **{summary['preemptions']}** priority preemptions")
        if summary["optimizations"]:
            lines.append(f"- Made **{summary['optimizations']}** optimization improvements")

        lines += ["", "### Phase Breakdown", ""]
        for phase in report["phases"]:
            lines.append(f"#### {phase['name']}")
            lines.append(phase["description"])
            if phase["summary"]:
                lines.append(f"> {phase['summary']}")
            lines.append(f"Duration: {phase['duration']} | Decisions: {phase['decision_count']}")
            lines.append("")

        return "\n".join(lines)
