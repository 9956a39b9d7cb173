"""
Shared builders for scheduler tests.
"""

from datetime import date, datetime, time, timedelta, timezone

from models import PriorityToken, Session

# Monday
START = date(2025, 1, 13)


def at(day: int, hour: int) -> datetime:
    """UTC datetime `day` days after START at `hour`:00."""
    return datetime.combine(START + timedelta(days=day), time(hour), tzinfo=timezone.utc)


def make_session(session_id: str, start: datetime, end: datetime, room_id: str = "room1",
                 therapist_id: str = "emp1", priority: str = None, **kwargs) -> Session:
    return Session(
        id=session_id,
        title=kwargs.pop("title", f"Session {session_id}"),
        type=kwargs.pop("type", "Vamana"),
        action=kwargs.pop("action", "Abhyanga & Swedana"),
        therapist_id=therapist_id,
        room_id=room_id,
        patient_id=kwargs.pop("patient_id", "p9"),
        start=start,
        end=end,
        priority_token=PriorityToken.of(priority) if priority else None,
        **kwargs
    )
