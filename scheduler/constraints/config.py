"""Tunable weights and limits for the constraint rules."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from scheduler.data.models import LimitSettings, WeightSettings


@dataclass
class ConstraintWeights:
    """Configurable penalty weights for soft constraints."""
    # Teacher day shape
    daily_load_imbalance: int = 5  # Per lesson above the even daily share
    teacher_gap: int = 3  # Per empty period between lessons
    consecutive_excess: int = 10  # Per period beyond the consecutive limit

    # Teacher preferences
    preference_miss: int = 2  # Per lesson outside every preferred slot
    avoidance_hit: int = 8  # Per lesson inside an avoided slot

    # Rooms
    room_type_mismatch: int = 20

    # Class day shape
    class_daily_overflow: int = 50  # Per lesson above the class daily limit
    same_day_repetition: int = 4  # Per pair of same-course lessons on one day

    @classmethod
    def from_settings(cls, settings: Optional[WeightSettings]) -> "ConstraintWeights":
        if settings is None:
            return cls()
        return cls(**settings.model_dump())

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ConstraintLimits:
    """Limits the soft rules measure against."""
    max_consecutive_hours: int = 4
    max_class_lessons_per_day: int = 6

    @classmethod
    def from_settings(cls, settings: Optional[LimitSettings]) -> "ConstraintLimits":
        if settings is None:
            return cls()
        return cls(
            max_consecutive_hours=settings.max_consecutive_hours,
            max_class_lessons_per_day=settings.max_class_lessons_per_day,
        )
