"""
Hard Constraint Validation Logic.

This module answers the question: "Is this set of sessions clinically and physically possible?"
Each validator is a pure function over sessions and resources returning a ValidationResult.
`validate_all_constraints` aggregates them into a severity-classified report whose
summary counts feed straight into the optimizers' fitness functions.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from models import InventoryItem, InventoryStatus, Patient, Session, Therapist, TherapyProtocol, weekday_name


class ConstraintType(str, Enum):
    SEQUENCE = "SEQUENCE"
    GAP = "GAP"
    CONTRAINDICATION = "CONTRAINDICATION"
    THERAPIST_AVAILABILITY = "THERAPIST_AVAILABILITY"
    ROOM_AVAILABILITY = "ROOM_AVAILABILITY"
    MATERIAL_SUFFICIENCY = "MATERIAL_SUFFICIENCY"
    PATIENT_AVAILABILITY = "PATIENT_AVAILABILITY"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"  # cannot proceed
    WARNING = "WARNING"  # proceed with caution
    INFO = "INFO"


@dataclass
class ConstraintViolation:
    """Detailed reason for rejection."""
    constraint_type: ConstraintType
    severity: Severity
    message: str
    sessions: List[Session] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.constraint_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "sessions": [s.id for s in self.sessions],
            **self.details,
        }


@dataclass
class ValidationResult:
    valid: bool
    violations: List[ConstraintViolation] = field(default_factory=list)

    @property
    def critical(self) -> List[ConstraintViolation]:
        return [v for v in self.violations if v.is_critical]


@dataclass
class ConstraintReport:
    """Combined outcome of every validator."""
    valid: bool
    results: Dict[str, ValidationResult]
    all_violations: List[ConstraintViolation]
    critical_violations: List[ConstraintViolation]
    summary: Dict[str, int]


# Consumption per session, keyed by session type (therapy name)
DEFAULT_MATERIAL_REQUIREMENTS: Dict[str, List[Dict[str, Any]]] = {
    "Abhyanga": [{"name": "Sesame Oil", "quantity": 0.5}],
    "Vamana": [{"name": "Sesame Oil", "quantity": 0.3}, {"name": "Steam Towels", "quantity": 2}],
    "Shirodhara": [{"name": "Sesame Oil", "quantity": 1}],
    "Virechana": [{"name": "Dashamoola Herbs", "quantity": 1}],
}

# Age limits only when the phrase names an age group ("Children under 12") or a unit ("over 70 years")
_AGE_RULE = re.compile(
    r"\b(?:children|child|kids|elderly|adults?|patients?|aged?)\s+(under|over)\s+(\d+)\b"
    r"|\b(under|over)\s+(\d+)\s*(?:years?|yrs?)\b",
    re.IGNORECASE
)


def _no_critical(violations: List[ConstraintViolation]) -> bool:
    return not any(v.is_critical for v in violations)


def _by_start(sessions: Iterable[Session]) -> List[Session]:
    return sorted(sessions, key=lambda s: s.start)


def validate_therapy_sequence(sessions: Sequence[Session], therapy: TherapyProtocol) -> ValidationResult:
    """Workflow steps must not go backwards in time."""
    if not therapy.workflow:
        return ValidationResult(valid=True)

    step_by_action = {w.action: w.step for w in therapy.workflow}
    violations = []
    last_step = 0

    for session in _by_start(sessions):
        step = session.step_number if session.step_number is not None else step_by_action.get(session.action)
        if step is None:
            continue
        if step < last_step:
            violations.append(ConstraintViolation(
                ConstraintType.SEQUENCE,
                Severity.CRITICAL,
                f'Step "{session.action}" (Step {step}) cannot come after Step {last_step}',
                sessions=[session],
                details={"step": step, "previous_step": last_step}
            ))
        last_step = step

    return ValidationResult(valid=not violations, violations=violations)


def validate_session_gaps(
    sessions: Sequence[Session],
    min_hours: float = 1.0,
    max_hours: float = 48.0
) -> ValidationResult:
    """Consecutive sessions need breathing room, but should not drift too far apart."""
    violations = []
    ordered = _by_start(sessions)

    for prev, curr in zip(ordered, ordered[1:]):
        gap_hours = (curr.start - prev.end).total_seconds() / 3600

        if gap_hours < min_hours:
            violations.append(ConstraintViolation(
                ConstraintType.GAP,
                Severity.CRITICAL,
                f"Minimum {min_hours:g}h gap required between sessions. Found: {gap_hours:.1f}h",
                sessions=[prev, curr],
                details={"gap_hours": round(gap_hours, 2)}
            ))
        if gap_hours > max_hours:
            violations.append(ConstraintViolation(
                ConstraintType.GAP,
                Severity.WARNING,
                f"Sessions are {gap_hours:.1f}h apart, exceeding recommended {max_hours:g}h",
                sessions=[prev, curr],
                details={"gap_hours": round(gap_hours, 2)}
            ))

    return ValidationResult(valid=_no_critical(violations), violations=violations)


def check_patient_contraindications(patient: Patient, therapy: TherapyProtocol) -> ValidationResult:
    """
    Eligibility check. A result with any CRITICAL violation means the patient is ineligible.

    Conditions and contraindications match on case-insensitive substrings in either
    direction. Age thresholds ('Children under 12', 'Elderly over 70') are read
    from the contraindication text; other 'over N' phrases are not ages.
    """
    violations = []
    if not therapy.contraindications:
        return ValidationResult(valid=True)

    for condition in patient.conditions:
        cond = condition.strip().lower()
        if not cond:
            continue
        for contraindication in therapy.contraindications:
            contra = contraindication.strip().lower()
            if contra and (contra in cond or cond in contra):
                violations.append(ConstraintViolation(
                    ConstraintType.CONTRAINDICATION,
                    Severity.CRITICAL,
                    f'Patient condition "{condition}" conflicts with contraindication "{contraindication}"',
                    details={"condition": condition, "contraindication": contraindication}
                ))

    if patient.age is not None:
        for contraindication in therapy.contraindications:
            for match in _AGE_RULE.finditer(contraindication):
                direction = (match.group(1) or match.group(3)).lower()
                limit = int(match.group(2) or match.group(4))
                if direction == "under" and patient.age < limit:
                    message = f"Patient age {patient.age} is below minimum age requirement"
                elif direction == "over" and patient.age > limit:
                    message = f"Patient age {patient.age} exceeds maximum age limit"
                else:
                    continue
                violations.append(ConstraintViolation(
                    ConstraintType.CONTRAINDICATION,
                    Severity.CRITICAL,
                    message,
                    details={"condition": f"Age: {patient.age}", "contraindication": contraindication}
                ))

    return ValidationResult(valid=_no_critical(violations), violations=violations)


def validate_therapist_availability(sessions: Sequence[Session], therapists: Sequence[Therapist]) -> ValidationResult:
    """Therapist must exist and be on shift; a missing skill match is only a warning."""
    index = {t.id: t for t in therapists}
    violations = []

    for session in sessions:
        therapist = index.get(session.therapist_id)
        if therapist is None:
            violations.append(ConstraintViolation(
                ConstraintType.THERAPIST_AVAILABILITY,
                Severity.CRITICAL,
                f"Therapist {session.therapist_id} not found",
                sessions=[session]
            ))
            continue

        day = weekday_name(session.start)
        if not therapist.works_on(day):
            violations.append(ConstraintViolation(
                ConstraintType.THERAPIST_AVAILABILITY,
                Severity.CRITICAL,
                f"{therapist.name or therapist.id} not available on {day}",
                sessions=[session],
                details={"therapist_id": therapist.id, "weekday": day}
            ))

        if therapist.skills and session.type and not therapist.has_skill_for(session.type):
            violations.append(ConstraintViolation(
                ConstraintType.THERAPIST_AVAILABILITY,
                Severity.WARNING,
                f"{therapist.name or therapist.id} may not be trained for {session.type}",
                sessions=[session],
                details={"therapist_id": therapist.id}
            ))

    return ValidationResult(valid=_no_critical(violations), violations=violations)


def validate_room_availability(
    sessions: Sequence[Session],
    existing_sessions: Sequence[Session] = ()
) -> ValidationResult:
    """No room may hold two overlapping sessions, new or pre-existing."""
    violations = []
    everything = list(existing_sessions) + list(sessions)

    for session in sessions:
        if session.room_id is None:
            continue
        for other in everything:
            if other.id == session.id or other.room_id != session.room_id:
                continue
            if session.overlaps(other):
                violations.append(ConstraintViolation(
                    ConstraintType.ROOM_AVAILABILITY,
                    Severity.CRITICAL,
                    f"Room {session.room_id} has overlapping booking",
                    sessions=[session, other],
                    details={"room_id": session.room_id}
                ))

    return ValidationResult(valid=not violations, violations=violations)


def material_table(overrides: Optional[Mapping[str, Sequence[Any]]] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Default requirement table with per-type overrides applied."""
    table = {k: list(v) for k, v in DEFAULT_MATERIAL_REQUIREMENTS.items()}
    for session_type, needs in (overrides or {}).items():
        table[session_type] = [
            n if isinstance(n, dict) else {"name": n.name, "quantity": n.quantity}
            for n in needs
        ]
    return table


def validate_material_sufficiency(
    sessions: Sequence[Session],
    inventory: Sequence[InventoryItem],
    requirements: Optional[Mapping[str, Sequence[Any]]] = None
) -> ValidationResult:
    """Total consumption of the planned sessions must be covered by stock."""
    table = material_table(requirements)
    needs: Dict[str, float] = defaultdict(float)
    for session in sessions:
        for req in table.get(session.type, []):
            needs[req["name"]] += float(req["quantity"])

    violations = []
    for material, needed in needs.items():
        item = next((i for i in inventory if material.lower() in i.name.lower()), None)

        if item is None:
            violations.append(ConstraintViolation(
                ConstraintType.MATERIAL_SUFFICIENCY,
                Severity.WARNING,
                f'Material "{material}" not found in inventory',
                details={"material": material, "needed": needed}
            ))
        elif item.stock < needed:
            violations.append(ConstraintViolation(
                ConstraintType.MATERIAL_SUFFICIENCY,
                Severity.CRITICAL if item.status == InventoryStatus.LOW else Severity.WARNING,
                f"Insufficient {material}: have {item.stock:g}, need {needed:g}",
                details={"material": material, "available": item.stock, "needed": needed}
            ))

    return ValidationResult(valid=_no_critical(violations), violations=violations)


def validate_patient_availability(sessions: Sequence[Session], patient: Patient) -> ValidationResult:
    """Every session must start inside one of the patient's windows (if any are declared)."""
    if not patient.availability:
        return ValidationResult(valid=True)

    violations = []
    for session in sessions:
        if not any(window.contains(session.start) for window in patient.availability):
            violations.append(ConstraintViolation(
                ConstraintType.PATIENT_AVAILABILITY,
                Severity.CRITICAL,
                f"Patient not available on {session.start:%a %b %d %Y}",
                sessions=[session]
            ))

    return ValidationResult(valid=not violations, violations=violations)


def validate_all_constraints(
    sessions: Sequence[Session],
    therapy: TherapyProtocol,
    patient: Patient,
    therapists: Sequence[Therapist],
    existing_sessions: Sequence[Session] = (),
    inventory: Sequence[InventoryItem] = (),
    material_requirements: Optional[Mapping[str, Sequence[Any]]] = None,
    min_gap_hours: float = 1.0,
    max_gap_hours: float = 48.0
) -> ConstraintReport:
    """Run every validator and aggregate the violations by severity."""
    results = {
        "sequence": validate_therapy_sequence(sessions, therapy),
        "gaps": validate_session_gaps(sessions, min_gap_hours, max_gap_hours),
        "contraindications": check_patient_contraindications(patient, therapy),
        "therapist_availability": validate_therapist_availability(sessions, therapists),
        "room_availability": validate_room_availability(sessions, existing_sessions),
        "material_sufficiency": validate_material_sufficiency(sessions, inventory, material_requirements),
        "patient_availability": validate_patient_availability(sessions, patient),
    }

    all_violations = [v for r in results.values() for v in r.violations]
    critical = [v for v in all_violations if v.is_critical]

    return ConstraintReport(
        valid=not critical,
        results=results,
        all_violations=all_violations,
        critical_violations=critical,
        summary={
            "total": len(all_violations),
            "critical": len(critical),
            "warnings": sum(1 for v in all_violations if v.severity == Severity.WARNING),
            "info": sum(1 for v in all_violations if v.severity == Severity.INFO),
        }
    )
