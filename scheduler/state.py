"""
Scheduling Context.

This module acts as the read-only 'Memory' of a run.
One SchedulingContext is built per generate_schedule call and shared by every
fitness evaluation. Nothing in it is mutated after construction, which is what
lets population and swarm members be scored in parallel.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models import (
    InventoryItem,
    Patient,
    Room,
    Session,
    Therapist,
    TherapyProtocol,
    TimeSlot,
    WorkflowStep,
)
from .constraints import ConstraintReport, material_table, validate_all_constraints


@dataclass(frozen=True)
class SchedulingContext:
    """Immutable per-run inputs: {therapy, patient, therapists, rooms, time_slots, existing_sessions, inventory}."""
    therapy: TherapyProtocol
    patient: Patient
    therapists: Tuple[Therapist, ...]
    rooms: Tuple[Room, ...]
    time_slots: Tuple[TimeSlot, ...]
    existing_sessions: Tuple[Session, ...] = ()
    inventory: Tuple[InventoryItem, ...] = ()
    material_requirements: Dict[str, List[Dict[str, Any]]] = field(default_factory=material_table)
    min_gap_hours: float = 1.0
    max_gap_hours: float = 48.0

    @classmethod
    def build(
        cls,
        therapy: TherapyProtocol,
        patient: Patient,
        therapists: Sequence[Therapist],
        rooms: Sequence[Room],
        time_slots: Sequence[TimeSlot],
        existing_sessions: Sequence[Session] = (),
        inventory: Sequence[InventoryItem] = (),
        material_requirements: Optional[Dict[str, Any]] = None,
        min_gap_hours: float = 1.0,
        max_gap_hours: float = 48.0
    ) -> "SchedulingContext":
        return cls(
            therapy=therapy,
            patient=patient,
            therapists=tuple(therapists),
            rooms=tuple(rooms),
            time_slots=tuple(time_slots),
            existing_sessions=tuple(existing_sessions),
            inventory=tuple(inventory),
            material_requirements=material_table(material_requirements),
            min_gap_hours=min_gap_hours,
            max_gap_hours=max_gap_hours,
        )

    # --- Query Methods ---

    @property
    def num_slots(self) -> int:
        return len(self.time_slots)

    @property
    def workflow(self) -> List[WorkflowStep]:
        return self.therapy.ordered_workflow()

    def clamp_slot(self, index: int) -> int:
        return max(0, min(index, self.num_slots - 1))

    def skilled_therapists(self) -> List[Therapist]:
        """Therapists whose skills match the therapy; therapists without skills count as generalists."""
        return [
            t for t in self.therapists
            if not t.skills or t.matches_therapy(self.therapy.name)
        ]

    def make_session(
        self,
        step: WorkflowStep,
        therapist_id: Optional[str],
        room_id: Optional[str],
        slot_index: int,
        session_id: Optional[str] = None
    ) -> Session:
        """Materialise a workflow step at a slot index."""
        slot = self.time_slots[slot_index]
        return Session(
            id=session_id or f"temp_{step.id}",
            title=f"{self.therapy.name} - {step.action}",
            type=self.therapy.name,
            action=step.action,
            therapist_id=therapist_id,
            room_id=room_id,
            patient_id=self.patient.id,
            start=slot.start,
            end=slot.end,
            step_id=step.id,
            step_number=step.step,
            time_slot_index=slot_index,
        )

    def evaluate(self, sessions: Sequence[Session]) -> ConstraintReport:
        """Full constraint report for a candidate set of new sessions."""
        return validate_all_constraints(
            sessions,
            therapy=self.therapy,
            patient=self.patient,
            therapists=self.therapists,
            existing_sessions=self.existing_sessions,
            inventory=self.inventory,
            material_requirements=self.material_requirements,
            min_gap_hours=self.min_gap_hours,
            max_gap_hours=self.max_gap_hours,
        )
