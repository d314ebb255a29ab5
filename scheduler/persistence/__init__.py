"""Relational storage for timetables and their slots."""

from .database import (
    Base,
    TimetableRecord,
    ScheduleSlotRecord,
    SerializedSession,
    create_db_engine,
    create_session_factory,
)
from .repository import TimetableRepository

__all__ = [
    "Base",
    "TimetableRecord",
    "ScheduleSlotRecord",
    "SerializedSession",
    "create_db_engine",
    "create_session_factory",
    "TimetableRepository",
]
