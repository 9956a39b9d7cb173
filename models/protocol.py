"""
Therapy protocol and patient data models for the Hybrid Therapy Scheduler.

This module defines the 'Demand' side of the scheduler:
1. TherapyProtocol (ordered workflow of treatment steps)
2. Patient (medical conditions and availability windows)
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from .timeutil import ensure_aware


class MaterialRequirement(BaseModel):
    """A consumable or piece of kit a workflow step needs."""
    name: str = Field(min_length=1)
    quantity: str = Field(default="1", description="Free-text quantity (e.g. '30-100ml')")
    unit: str = Field(default="")


class WorkflowStep(BaseModel):
    """One ordered action within a therapy protocol."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier of the step")
    step: int = Field(ge=1, description="Position of the step in the workflow (1-based)")
    action: str = Field(min_length=1, description="What happens in this step (e.g. 'Abhyanga & Swedana')")
    duration: str = Field(default="", description="Clinical duration note (e.g. '3-7 days')")
    notes: str = Field(default="")

    required_materials: List[MaterialRequirement] = Field(default_factory=list)
    precautions: List[str] = Field(default_factory=list)


class TherapyProtocol(BaseModel):
    """
    A treatment protocol: an ordered workflow plus the conditions that rule it out.
    Immutable once loaded for a run.
    """

    # --- Core Identity ---
    id: str = Field(description="Unique identifier for the therapy")
    name: str = Field(min_length=1, description="Therapy name, also used as the session type")
    description: str = Field(default="")

    # --- Workflow ---
    workflow: List[WorkflowStep] = Field(
        default_factory=list,
        description="Ordered treatment steps. One session is scheduled per step."
    )

    # --- Safety ---
    contraindications: List[str] = Field(
        default_factory=list,
        description="Conditions that disqualify a patient (e.g. 'Cardiac conditions', 'Children under 12')"
    )
    safety_notes: str = Field(default="")

    @field_validator('workflow')
    @classmethod
    def validate_unique_step_ids(cls, v):
        """Step ids identify genes and sessions, so they must be unique."""
        ids = [s.id for s in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Workflow step ids must be unique")
        return v

    def ordered_workflow(self) -> List[WorkflowStep]:
        """Workflow sorted by step number (stable for equal numbers)."""
        return sorted(self.workflow, key=lambda s: s.step)

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "id": "t1",
            "name": "Vamana",
            "description": "Therapeutic Emesis used to expel excess Kapha.",
            "workflow": [
                {"id": "w1", "step": 1, "action": "Snehapana (Internal Oleation)", "duration": "3-7 days"},
                {"id": "w2", "step": 2, "action": "Abhyanga & Swedana", "duration": "1 day"}
            ],
            "contraindications": ["Pregnant women", "Children under 12", "Cardiac conditions"],
            "safety_notes": "Monitor pulse and blood pressure continuously during Vamana Vega."
        }
    })


class AvailabilityWindow(BaseModel):
    """A period during which the patient can attend sessions."""
    start: datetime
    end: datetime

    @field_validator('start', 'end')
    @classmethod
    def assume_utc(cls, v):
        return ensure_aware(v)

    @model_validator(mode='after')
    def validate_window(self):
        if self.end <= self.start:
            raise ValueError("Availability window end must be after start")
        return self

    def contains(self, moment: datetime) -> bool:
        """Inclusive containment, matching how session dates are checked."""
        return self.start <= moment <= self.end


class Patient(BaseModel):
    """The person a therapy is being scheduled for."""
    id: str = Field(description="Unique identifier")
    name: str = Field(default="")
    age: Optional[int] = Field(default=None, ge=0, le=130)

    conditions: List[str] = Field(
        default_factory=list,
        description="Known medical conditions, matched against therapy contraindications"
    )
    availability: List[AvailabilityWindow] = Field(
        default_factory=list,
        description="Windows the patient can attend. Empty means always available."
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "p1",
            "name": "Ramesh Gupta",
            "age": 45,
            "conditions": ["Hypertension"],
            "availability": [
                {"start": "2025-01-13T00:00:00+00:00", "end": "2025-01-31T23:59:00+00:00"}
            ]
        }
    })
