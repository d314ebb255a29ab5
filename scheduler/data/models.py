"""
Pydantic models for the scheduling inputs.

These describe what the school administration backend hands to the scheduler:
periods, rooms, teachers, courses and class groups with their weekly-hour
requirements, plus the engine configuration.

Time conventions:
- Period times are minutes from midnight (0-1439)
- Days are 0-6 (Monday-Sunday); a solve uses the first ``num_days`` of them
- Periods are shared across days and ordered by their ``index``

Example times:
- 8:00 AM = 480
- 12:30 PM = 750
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# Constants and Enums
# =============================================================================

class Day(int, Enum):
    """Day of week: 0=Monday through 6=Sunday."""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class RoomType(str, Enum):
    """Type of room/facility."""
    CLASSROOM = "classroom"
    SCIENCE_LAB = "science_lab"
    COMPUTER_LAB = "computer_lab"
    GYM = "gym"
    ART_ROOM = "art_room"
    MUSIC_ROOM = "music_room"
    WORKSHOP = "workshop"
    LIBRARY = "library"
    AUDITORIUM = "auditorium"
    OTHER = "other"


DAY_NAMES = [day.name.capitalize() for day in Day]

MinutesFromMidnight = Annotated[int, Field(ge=0, le=1439, description="Time as minutes from midnight")]
DayIndex = Annotated[int, Field(ge=0, le=6, description="Day of week (0=Monday, 6=Sunday)")]


# =============================================================================
# Helper Functions
# =============================================================================

def minutes_to_time(minutes: int) -> str:
    """Convert minutes from midnight to HH:MM format."""
    h, m = divmod(minutes, 60)
    return f"{h:02d}:{m:02d}"


def day_name(day: int) -> str:
    """Get day name from index."""
    try:
        return DAY_NAMES[Day(day)]
    except ValueError:
        return f"Day {day}"


# =============================================================================
# Core Entity Models
# =============================================================================

class TimePreference(BaseModel):
    """
    A (day, period) pattern used for teacher preferences.

    A missing ``day`` or ``period`` acts as a wildcard, so ``{"day": 0}``
    means "any period on Monday" and ``{"period": 0}`` means "first period
    on any day".
    """
    model_config = ConfigDict(extra="forbid")

    day: Optional[DayIndex] = Field(default=None, description="Day of week, or any day")
    period: Optional[int] = Field(default=None, ge=0, description="Period index, or any period")

    def matches(self, day: int, period: int) -> bool:
        """Whether the given slot falls inside this pattern."""
        if self.day is not None and self.day != day:
            return False
        if self.period is not None and self.period != period:
            return False
        return True

    def __str__(self) -> str:
        day_part = day_name(self.day) if self.day is not None else "any day"
        period_part = f"period {self.period}" if self.period is not None else "any period"
        return f"{day_part}, {period_part}"


class Period(BaseModel):
    """Teaching period in the daily schedule, repeated on every school day."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    index: int = Field(ge=0, description="Ordinal position within the day")
    name: str = Field(default="", description="Display name (e.g., 'Period 1')")
    start_minutes: MinutesFromMidnight = Field(description="Start time")
    end_minutes: MinutesFromMidnight = Field(description="End time")

    @model_validator(mode="after")
    def validate_time_range(self) -> "Period":
        """Ensure start time is before end time."""
        if self.start_minutes >= self.end_minutes:
            raise ValueError(
                f"start_minutes ({self.start_minutes}) must be less than "
                f"end_minutes ({self.end_minutes})"
            )
        return self

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    @property
    def label(self) -> str:
        return self.name or f"Period {self.index + 1}"

    def __str__(self) -> str:
        return f"{self.label} ({minutes_to_time(self.start_minutes)}-{minutes_to_time(self.end_minutes)})"


class Room(BaseModel):
    """Room/facility."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    name: str = Field(min_length=1, description="Room name/number")
    capacity: int = Field(ge=1, description="Seats available")
    type: RoomType = Field(default=RoomType.CLASSROOM, description="Type of room")

    def __str__(self) -> str:
        return f"{self.name} ({self.type.value}, {self.capacity} seats)"


class Teacher(BaseModel):
    """Teacher entity."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    name: str = Field(min_length=1, description="Full name")
    max_weekly_hours: int = Field(default=20, ge=1, le=80, description="Weekly teaching capacity in hours")
    preferred_slots: list[TimePreference] = Field(default_factory=list, description="Preferred slots")
    avoided_slots: list[TimePreference] = Field(default_factory=list, description="Slots to avoid")

    def prefers(self, day: int, period: int) -> bool:
        """True when no preferences are declared or the slot matches one."""
        if not self.preferred_slots:
            return True
        return any(p.matches(day, period) for p in self.preferred_slots)

    def avoids(self, day: int, period: int) -> bool:
        return any(p.matches(day, period) for p in self.avoided_slots)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class Course(BaseModel):
    """Course/subject taught to class groups."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    name: str = Field(min_length=1, description="Course name")
    code: Optional[str] = Field(default=None, max_length=12, description="Short code")
    teacher_id: Optional[str] = Field(default=None, description="Teacher assigned to this course")
    coefficient: float = Field(default=1.0, ge=0, description="Weight used in grade reporting")
    required_room_type: Optional[RoomType] = Field(default=None, description="Room type this course needs")

    def __str__(self) -> str:
        return f"{self.name} ({self.code or self.id})"


class CourseRequirement(BaseModel):
    """Weekly-hour requirement of a class group for one course."""
    model_config = ConfigDict(extra="forbid")

    course_id: str = Field(min_length=1, description="Course ID")
    # Not range-checked here; the problem builder reports non-positive values
    weekly_hours: int = Field(description="Lessons per week")


class ClassGroup(BaseModel):
    """Class/student group."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique identifier")
    name: str = Field(min_length=1, description="Class name (e.g., '6A')")
    student_count: int = Field(default=0, ge=0, description="Number of students")
    requirements: list[CourseRequirement] = Field(default_factory=list, description="Weekly course hours")

    @property
    def total_weekly_hours(self) -> int:
        return sum(max(r.weekly_hours, 0) for r in self.requirements)

    def __str__(self) -> str:
        return self.name


# =============================================================================
# Configuration Models
# =============================================================================

class SolverSettings(BaseModel):
    """Search settings for a solve."""
    model_config = ConfigDict(extra="forbid")

    time_budget_seconds: float = Field(default=30.0, gt=0, le=3600, description="Wall-clock budget")
    max_iterations_without_improvement: int = Field(
        default=20000, ge=1, description="Stop after this many moves without a new best"
    )
    construction: Literal["cp_sat", "greedy"] = Field(default="cp_sat", description="Initial placement method")
    seed_time_fraction: float = Field(default=0.3, gt=0, le=1, description="Share of the budget for construction")
    random_seed: int = Field(default=0, description="Seed for the move generator")


class WeightSettings(BaseModel):
    """Soft constraint weights."""
    model_config = ConfigDict(extra="forbid")

    daily_load_imbalance: int = Field(default=5, ge=0)
    teacher_gap: int = Field(default=3, ge=0)
    consecutive_excess: int = Field(default=10, ge=0)
    preference_miss: int = Field(default=2, ge=0)
    avoidance_hit: int = Field(default=8, ge=0)
    room_type_mismatch: int = Field(default=20, ge=0)
    class_daily_overflow: int = Field(default=50, ge=0)
    same_day_repetition: int = Field(default=4, ge=0)


class LimitSettings(BaseModel):
    """Daily limits and workload thresholds."""
    model_config = ConfigDict(extra="forbid")

    max_consecutive_hours: int = Field(default=4, ge=1, le=12, description="Longest run a teacher should teach")
    max_class_lessons_per_day: int = Field(default=6, ge=1, le=16, description="Class lessons per day")
    underutilized_percent: float = Field(default=80.0, gt=0, description="Below this is underutilized")
    overloaded_percent: float = Field(default=100.0, gt=0, description="Above this is overloaded")
    severe_overload_percent: float = Field(default=125.0, gt=0, description="Above this is severely overloaded")

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "LimitSettings":
        """Workload thresholds must be increasing."""
        if not (self.underutilized_percent <= self.overloaded_percent <= self.severe_overload_percent):
            raise ValueError(
                "workload thresholds must satisfy "
                "underutilized_percent <= overloaded_percent <= severe_overload_percent"
            )
        return self


class SchedulerConfig(BaseModel):
    """School-wide configuration settings."""
    model_config = ConfigDict(extra="forbid")

    school_name: Optional[str] = Field(default=None, description="School name")
    num_days: int = Field(default=5, ge=1, le=7, description="School days per week")
    solver: SolverSettings = Field(default_factory=SolverSettings)
    weights: WeightSettings = Field(default_factory=WeightSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)


# =============================================================================
# Main Input Model
# =============================================================================

class ScheduleInput(BaseModel):
    """
    Complete scheduling input.

    Reference integrity (courses pointing at teachers, requirements pointing
    at courses) is checked by the problem builder, which reports every issue
    at once. This model only enforces structure and unique ids.
    """
    model_config = ConfigDict(extra="forbid")

    config: SchedulerConfig = Field(default_factory=SchedulerConfig, description="Configuration")

    periods: list[Period] = Field(default_factory=list, description="Daily period structure")
    rooms: list[Room] = Field(default_factory=list, description="Rooms")
    teachers: list[Teacher] = Field(default_factory=list, description="Teachers")
    courses: list[Course] = Field(default_factory=list, description="Courses")
    classes: list[ClassGroup] = Field(default_factory=list, description="Class groups")

    @model_validator(mode="after")
    def validate_no_duplicate_ids(self) -> "ScheduleInput":
        """Ensure no duplicate IDs within each entity type."""
        errors: list[str] = []

        def check_duplicates(items: list, entity_name: str) -> None:
            seen: set[str] = set()
            for item in items:
                if item.id in seen:
                    errors.append(f"Duplicate {entity_name} ID: '{item.id}'")
                seen.add(item.id)

        check_duplicates(self.periods, "period")
        check_duplicates(self.rooms, "room")
        check_duplicates(self.teachers, "teacher")
        check_duplicates(self.courses, "course")
        check_duplicates(self.classes, "class")

        indexes = [p.index for p in self.periods]
        if len(indexes) != len(set(indexes)):
            errors.append("Period indexes must be unique")

        if errors:
            raise ValueError("Duplicate ID validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        return self

    @property
    def total_weekly_hours(self) -> int:
        return sum(c.total_weekly_hours for c in self.classes)

    @property
    def total_slots(self) -> int:
        """Room-period slots available in a week."""
        return self.config.num_days * len(self.periods) * len(self.rooms)

    def summary(self) -> dict[str, Any]:
        """Get a summary of the input data."""
        return {
            "school_name": self.config.school_name,
            "days": self.config.num_days,
            "periods": len(self.periods),
            "rooms": len(self.rooms),
            "teachers": len(self.teachers),
            "courses": len(self.courses),
            "classes": len(self.classes),
            "total_weekly_hours": self.total_weekly_hours,
            "total_slots": self.total_slots,
        }


# =============================================================================
# JSON Loading Helpers
# =============================================================================

def parse_schedule_input(data: dict[str, Any]) -> ScheduleInput:
    """
    Validate a raw input document.

    Keys may be camelCase (as sent by the administration backend) or
    snake_case.

    Raises:
        pydantic.ValidationError: If validation fails
    """
    return ScheduleInput.model_validate(_convert_keys_to_snake_case(data))


def load_schedule_from_json(path: Union[str, Path]) -> ScheduleInput:
    """
    Load and validate scheduling input from a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Validated ScheduleInput model

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If invalid JSON
        pydantic.ValidationError: If validation fails
    """
    with open(Path(path)) as f:
        data = json.load(f)
    return parse_schedule_input(data)


def _convert_keys_to_snake_case(obj: Any) -> Any:
    """Recursively convert dictionary keys from camelCase to snake_case."""

    def to_snake_case(name: str) -> str:
        name = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
        name = re.sub(r'([a-z\d])([A-Z])', r'\1_\2', name)
        return name.lower()

    if isinstance(obj, dict):
        return {to_snake_case(k): _convert_keys_to_snake_case(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_keys_to_snake_case(item) for item in obj]
    else:
        return obj
