"""Read-only snapshot of the resources a solve works with."""

from __future__ import annotations

from typing import Optional

from .models import (
    ClassGroup,
    Course,
    Period,
    Room,
    ScheduleInput,
    SchedulerConfig,
    Teacher,
)


class ResourceCatalog:
    """
    Immutable view of periods, rooms, teachers, courses and class groups.

    Periods are kept in ordinal order; ``period_position`` maps a period
    index to its position in that order so engine code can work with dense
    positions while persisted slots keep the period index.
    """

    def __init__(
        self,
        periods: list[Period],
        rooms: list[Room],
        teachers: list[Teacher],
        courses: list[Course],
        classes: list[ClassGroup],
        config: Optional[SchedulerConfig] = None,
    ):
        self.config = config or SchedulerConfig()
        self.days: tuple[int, ...] = tuple(range(self.config.num_days))
        self.periods: tuple[Period, ...] = tuple(sorted(periods, key=lambda p: p.index))
        self.rooms: tuple[Room, ...] = tuple(rooms)
        self.teachers: tuple[Teacher, ...] = tuple(teachers)
        self.courses: tuple[Course, ...] = tuple(courses)
        self.classes: tuple[ClassGroup, ...] = tuple(classes)

        self._teacher_map = {t.id: t for t in self.teachers}
        self._room_map = {r.id: r for r in self.rooms}
        self._course_map = {c.id: c for c in self.courses}
        self._class_map = {c.id: c for c in self.classes}
        self._period_map = {p.index: p for p in self.periods}
        self._period_positions = {p.index: pos for pos, p in enumerate(self.periods)}
        self._room_positions = {r.id: pos for pos, r in enumerate(self.rooms)}

    @classmethod
    def from_input(cls, schedule_input: ScheduleInput) -> "ResourceCatalog":
        return cls(
            periods=schedule_input.periods,
            rooms=schedule_input.rooms,
            teachers=schedule_input.teachers,
            courses=schedule_input.courses,
            classes=schedule_input.classes,
            config=schedule_input.config,
        )

    # -------------------------------------------------------------------------
    # Lookup Methods
    # -------------------------------------------------------------------------

    def teacher(self, teacher_id: Optional[str]) -> Optional[Teacher]:
        return self._teacher_map.get(teacher_id) if teacher_id else None

    def room(self, room_id: Optional[str]) -> Optional[Room]:
        return self._room_map.get(room_id) if room_id else None

    def course(self, course_id: Optional[str]) -> Optional[Course]:
        return self._course_map.get(course_id) if course_id else None

    def class_group(self, class_id: Optional[str]) -> Optional[ClassGroup]:
        return self._class_map.get(class_id) if class_id else None

    def period(self, index: int) -> Optional[Period]:
        return self._period_map.get(index)

    def period_position(self, index: int) -> Optional[int]:
        """Position of a period index within the ordered period list."""
        return self._period_positions.get(index)

    def room_position(self, room_id: str) -> Optional[int]:
        return self._room_positions.get(room_id)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    @property
    def num_days(self) -> int:
        return len(self.days)

    @property
    def slots_per_week(self) -> int:
        """Distinct (day, period) pairs."""
        return len(self.days) * len(self.periods)

    def are_consecutive(self, first_index: int, second_index: int) -> bool:
        """Two periods are consecutive when their ordinals differ by one."""
        return abs(first_index - second_index) == 1
