"""
Schedule data models for the Hybrid Therapy Scheduler.

This module defines the 'Output' of the scheduling engine:
1. TimeSlot - a bookable interval generated fresh for each run.
2. Session - a workflow step committed to a therapist, a room and a time.
"""

from typing import List, Optional
from enum import Enum
from uuid import uuid4
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from datetime import date as date_type, datetime, time as time_type, timedelta, timezone, tzinfo

from .priority import PriorityToken
from .timeutil import ensure_aware, intervals_overlap


class SessionStatus(str, Enum):
    """Lifecycle of a session once handed to the session store."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TimeSlot(BaseModel):
    """A discrete bookable interval over the scheduling horizon. Never persisted."""
    id: str
    start: datetime
    end: datetime
    day_index: int = Field(ge=0, description="Days after the horizon start")
    hour_index: int = Field(ge=0, le=23, description="Wall-clock hour the slot starts at")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def _new_session_id() -> str:
    return f"session_{uuid4().hex[:12]}"


class Session(BaseModel):
    """
    One therapy session: a workflow step bound to a therapist, a room, a patient and a time.
    Created by the orchestrator; later mutated only by status-update and reschedule flows.
    """

    # --- Identity ---
    id: str = Field(default_factory=_new_session_id)
    title: str = Field(default="")
    type: str = Field(default="", description="Therapy name (session type)")
    action: str = Field(default="", description="Workflow step action")

    # --- Resource Allocation ---
    therapist_id: Optional[str] = Field(default=None)
    room_id: Optional[str] = Field(default=None)
    patient_id: Optional[str] = Field(default=None)

    # --- Timing ---
    start: datetime
    end: datetime

    # --- Workflow Tracking ---
    step_id: Optional[str] = Field(default=None)
    step_number: Optional[int] = Field(default=None, ge=1)
    time_slot_index: Optional[int] = Field(default=None, ge=0)

    status: SessionStatus = Field(default=SessionStatus.SCHEDULED)
    priority_token: Optional[PriorityToken] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)

    # --- Reschedule Trail ---
    rescheduled_from: Optional[List[datetime]] = Field(
        default=None,
        description="[start, end] of the slot the session occupied before being moved"
    )
    rescheduled_reason: str = Field(default="")

    @field_validator('start', 'end')
    @classmethod
    def assume_utc(cls, v):
        return ensure_aware(v)

    @model_validator(mode='after')
    def validate_interval(self):
        if self.end <= self.start:
            raise ValueError("Session end must be after start")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def priority_value(self) -> int:
        """Numeric priority; sessions without a token count as NORMAL."""
        return self.priority_token.value if self.priority_token else PriorityToken().value

    def overlaps(self, other) -> bool:
        """Time overlap with anything that has start/end (Session or TimeSlot)."""
        return intervals_overlap(self.start, self.end, other.start, other.end)

    def shares_resource(self, other: "Session") -> bool:
        """Same therapist or same room."""
        same_room = self.room_id is not None and self.room_id == other.room_id
        same_therapist = self.therapist_id is not None and self.therapist_id == other.therapist_id
        return same_room or same_therapist

    def conflicts_with(self, other: "Session") -> bool:
        return self.id != other.id and self.shares_resource(other) and self.overlaps(other)

    def moved_to(self, start: datetime, end: datetime, slot_index: Optional[int] = None) -> "Session":
        """A copy of this session at a new time. The original is left untouched."""
        return self.model_copy(update={
            "start": start,
            "end": end,
            "time_slot_index": slot_index,
        })

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "s1",
            "title": "Vamana - Abhyanga & Swedana",
            "type": "Vamana",
            "action": "Abhyanga & Swedana",
            "therapist_id": "emp1",
            "room_id": "room1",
            "patient_id": "p1",
            "start": "2025-01-15T10:00:00+00:00",
            "end": "2025-01-15T12:00:00+00:00",
            "status": "scheduled",
            "step_number": 2
        }
    })


def generate_time_slots(
    start_date: date_type,
    horizon_days: int = 14,
    working_hours_start: int = 9,
    working_hours_end: int = 18,
    slot_duration_hours: int = 2,
    tz: tzinfo = timezone.utc
) -> List[TimeSlot]:
    """
    Bookable slots for every working day of the horizon.

    Sundays are skipped. A slot is emitted for each hour step that starts before
    `working_hours_end`, so the last slot of a day may run past closing time.
    """
    slots = []
    for day in range(horizon_days):
        current = start_date + timedelta(days=day)
        if current.weekday() == 6:
            continue

        for hour in range(working_hours_start, working_hours_end, slot_duration_hours):
            slot_start = datetime.combine(current, time_type(hour), tzinfo=tz)
            slots.append(TimeSlot(
                id=f"slot_{day}_{hour}",
                start=slot_start,
                end=slot_start + timedelta(hours=slot_duration_hours),
                day_index=day,
                hour_index=hour
            ))
    return slots
