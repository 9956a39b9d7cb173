"""
Resource data models for the Hybrid Therapy Scheduler.

This module defines the 'Supply' side of the scheduler:
1. Therapists (Human resources with weekly shifts and skills)
2. Rooms (Physical treatment spaces)
3. Inventory (Consumable materials with stock levels)
"""

from enum import Enum
from typing import List
from pydantic import BaseModel, Field, field_validator, ConfigDict

WEEKDAY_ABBREVIATIONS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def weekday_key(name: str) -> str:
    """Normalise 'Monday' / 'MON' / 'mon' to 'mon'."""
    return name.strip()[:3].lower()


class Therapist(BaseModel):
    """
    Human resource who delivers sessions on the days of their shifts.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(default="", description="Name of the professional")
    role: str = Field(default="", description="e.g. 'Senior Therapist'")

    skills: List[str] = Field(
        default_factory=list,
        description="Therapies this person is trained for (e.g. 'Vamana', 'Abhyanga')"
    )
    shifts: List[str] = Field(
        default_factory=list,
        description="Weekday names the therapist works (e.g. 'Mon', 'Tuesday')"
    )

    @field_validator('shifts')
    @classmethod
    def validate_weekdays(cls, v):
        for day in v:
            if weekday_key(day) not in WEEKDAY_ABBREVIATIONS:
                raise ValueError(f"Unknown weekday in shifts: {day!r}")
        return v

    def works_on(self, weekday_name: str) -> bool:
        """Does this therapist have a shift on the given weekday?"""
        key = weekday_key(weekday_name)
        return any(weekday_key(day) == key for day in self.shifts)

    def has_skill_for(self, session_type: str) -> bool:
        """Case-insensitive substring match of the session type against the skills."""
        wanted = session_type.lower()
        return any(wanted in skill.lower() for skill in self.skills)

    def matches_therapy(self, therapy_name: str) -> bool:
        """Looser two-way match used when picking therapists for a protocol."""
        name = therapy_name.lower()
        return any(name in skill.lower() or skill.lower() in name for skill in self.skills)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "s1",
            "name": "Dr. Arya",
            "role": "Senior Therapist",
            "skills": ["Vamana", "Virechana", "Consultation"],
            "shifts": ["Mon", "Tue", "Wed", "Thu", "Fri"]
        }
    })


class Room(BaseModel):
    """A treatment room. Only one session may occupy it at a time."""
    id: str = Field(description="Unique identifier")
    name: str = Field(default="")


class InventoryStatus(str, Enum):
    """Stock health flag maintained by the inventory system."""
    OPTIMAL = "optimal"
    LOW = "low"


class InventoryItem(BaseModel):
    """A consumable material tracked in stock."""
    name: str = Field(min_length=1, description="e.g. 'Sesame Oil'")
    stock: float = Field(ge=0, description="Units currently on hand")
    unit: str = Field(default="")
    status: InventoryStatus = Field(default=InventoryStatus.OPTIMAL)


class ResourcePool(BaseModel):
    """Everything a run may allocate: staff, rooms and materials."""
    therapists: List[Therapist] = Field(default_factory=list)
    rooms: List[Room] = Field(default_factory=list)
    inventory: List[InventoryItem] = Field(default_factory=list)
