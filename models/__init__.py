"""
Data models package for the Hybrid Therapy Scheduler.

This package exports the three core pillars of the data architecture:
1. Demand (TherapyProtocol, WorkflowStep, Patient)
2. Supply (Therapist, Room, InventoryItem, ResourcePool)
3. Output (TimeSlot, Session, PriorityToken)
"""

from .protocol import (
    AvailabilityWindow,
    MaterialRequirement,
    Patient,
    TherapyProtocol,
    WorkflowStep
)

from .resource import (
    InventoryItem,
    InventoryStatus,
    ResourcePool,
    Room,
    Therapist
)

from .priority import (
    PRIORITY_VALUES,
    PriorityLevel,
    PriorityToken
)

from .schedule import (
    Session,
    SessionStatus,
    TimeSlot,
    generate_time_slots
)

from .timeutil import (
    ensure_aware,
    intervals_overlap,
    weekday_name
)

__all__ = [
    # --- Demand Models ---
    "TherapyProtocol",
    "WorkflowStep",
    "MaterialRequirement",
    "Patient",
    "AvailabilityWindow",

    # --- Resource Models ---
    "Therapist",
    "Room",
    "InventoryItem",
    "InventoryStatus",
    "ResourcePool",

    # --- Priority ---
    "PriorityLevel",
    "PriorityToken",
    "PRIORITY_VALUES",

    # --- Output Models ---
    "TimeSlot",
    "Session",
    "SessionStatus",
    "generate_time_slots",

    # --- Time Helpers ---
    "ensure_aware",
    "intervals_overlap",
    "weekday_name",
]
