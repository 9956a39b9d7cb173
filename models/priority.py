"""
Priority token model.

A token ranks the urgency of a scheduling request and is what preemption
decisions compare. The numeric value is derived from the level, never stored.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Union
from pydantic import BaseModel, Field, computed_field, field_validator

from .timeutil import ensure_aware


class PriorityLevel(str, Enum):
    """Urgency tiers, highest first."""
    EMERGENCY = "EMERGENCY"
    URGENT = "URGENT"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"

    @property
    def score(self) -> int:
        return PRIORITY_VALUES[self]

    @property
    def color(self) -> str:
        return PRIORITY_COLORS[self]

    @classmethod
    def parse(cls, level: Union[str, "PriorityLevel", None]) -> "PriorityLevel":
        """Lenient lookup: unknown or missing levels fall back to NORMAL."""
        if isinstance(level, PriorityLevel):
            return level
        try:
            return cls(str(level).upper())
        except ValueError:
            return cls.NORMAL


PRIORITY_VALUES = {
    PriorityLevel.EMERGENCY: 100,
    PriorityLevel.URGENT: 80,
    PriorityLevel.HIGH: 60,
    PriorityLevel.NORMAL: 40,
    PriorityLevel.LOW: 20,
}

PRIORITY_COLORS = {
    PriorityLevel.EMERGENCY: "#ef4444",
    PriorityLevel.URGENT: "#f97316",
    PriorityLevel.HIGH: "#eab308",
    PriorityLevel.NORMAL: "#22c55e",
    PriorityLevel.LOW: "#94a3b8",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriorityToken(BaseModel):
    """Ranked urgency marker attached to a scheduling request."""
    level: PriorityLevel = Field(default=PriorityLevel.NORMAL)
    reason: str = Field(default="")
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = Field(default=None)

    @field_validator('created_at', 'expires_at')
    @classmethod
    def assume_utc(cls, v):
        """Naive datetimes are read as UTC so expiry checks never mix naive and aware values."""
        return ensure_aware(v) if v is not None else v

    @classmethod
    def of(cls, level: Union[str, PriorityLevel, None], reason: str = "",
           expires_at: Optional[datetime] = None) -> "PriorityToken":
        return cls(level=PriorityLevel.parse(level), reason=reason, expires_at=expires_at)

    @computed_field
    @property
    def value(self) -> int:
        return self.level.score

    @computed_field
    @property
    def color(self) -> str:
        return self.level.color

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) > self.expires_at

    def can_preempt(self, other: Optional["PriorityToken"], now: Optional[datetime] = None) -> bool:
        """An unexpired token outranks strictly lower values. A missing token counts as NORMAL."""
        if self.is_expired(now):
            return False
        other_value = other.value if other is not None else PriorityLevel.NORMAL.score
        return self.value > other_value

    def to_dict(self) -> dict:
        return self.model_dump(mode='json')
