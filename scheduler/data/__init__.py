"""Input models and the resource catalog."""

from .models import (
    Day,
    RoomType,
    TimePreference,
    Period,
    Room,
    Teacher,
    Course,
    CourseRequirement,
    ClassGroup,
    SolverSettings,
    WeightSettings,
    LimitSettings,
    SchedulerConfig,
    ScheduleInput,
    parse_schedule_input,
    load_schedule_from_json,
    day_name,
    minutes_to_time,
)
from .catalog import ResourceCatalog

__all__ = [
    # Models
    "Day",
    "RoomType",
    "TimePreference",
    "Period",
    "Room",
    "Teacher",
    "Course",
    "CourseRequirement",
    "ClassGroup",
    "SolverSettings",
    "WeightSettings",
    "LimitSettings",
    "SchedulerConfig",
    "ScheduleInput",
    # Loading
    "parse_schedule_input",
    "load_schedule_from_json",
    # Helpers
    "day_name",
    "minutes_to_time",
    "ResourceCatalog",
]
