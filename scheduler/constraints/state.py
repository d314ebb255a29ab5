"""
Occupancy indexes shared by the constraint rules.

A slot inside the engine is ``(day, period_position, room_position)`` where
positions index ``catalog.periods`` and ``catalog.rooms``; ``None`` means the
lesson is unassigned. Every counter excludes the lesson currently being
scored, which is what lets each rule report a marginal impact.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .config import ConstraintLimits

if TYPE_CHECKING:
    from scheduler.data.models import RoomType, Teacher
    from scheduler.problem_builder import TimetableProblem

Slot = tuple[int, int, int]


@dataclass(frozen=True)
class LessonInfo:
    """Static facts about a lesson that rules look up on every move."""
    teacher_id: str
    class_id: str
    course_id: str
    class_size: int
    required_room_type: Optional[RoomType]
    daily_share: int  # even share of the teacher's weekly lessons per day


class ScheduleState:
    """Counters describing who occupies which (day, period, room)."""

    def __init__(self, problem: TimetableProblem, limits: Optional[ConstraintLimits] = None):
        catalog = problem.catalog
        self.limits = limits or ConstraintLimits()
        self.num_days = catalog.num_days
        self.num_periods = len(catalog.periods)
        self.num_rooms = len(catalog.rooms)
        self.period_indexes = [p.index for p in catalog.periods]
        # linked[p] is True when position p and p + 1 are back-to-back periods
        self.linked = [
            catalog.are_consecutive(self.period_indexes[p], self.period_indexes[p + 1])
            for p in range(self.num_periods - 1)
        ]
        self.room_ids = [r.id for r in catalog.rooms]
        self.room_capacity = [r.capacity for r in catalog.rooms]
        self.room_type = [r.type for r in catalog.rooms]
        self.teachers: dict[str, Teacher] = {t.id: t for t in catalog.teachers}

        weekly_load = Counter(l.teacher_id for l in problem.lessons)
        self.lessons: list[LessonInfo] = []
        for lesson in problem.lessons:
            group = catalog.class_group(lesson.class_id)
            course = catalog.course(lesson.course_id)
            self.lessons.append(LessonInfo(
                teacher_id=lesson.teacher_id,
                class_id=lesson.class_id,
                course_id=lesson.course_id,
                class_size=group.student_count if group else 0,
                required_room_type=course.required_room_type if course else None,
                daily_share=-(-weekly_load[lesson.teacher_id] // max(self.num_days, 1)),
            ))

        self._preference_cache: dict[tuple[str, int, int], tuple[int, int]] = {}
        self.reset()

    def reset(self) -> None:
        self.teacher_slot: Counter = Counter()
        self.room_slot: Counter = Counter()
        self.class_slot: Counter = Counter()
        self.teacher_day_load: Counter = Counter()
        self.class_day_load: Counter = Counter()
        self.class_course_day: Counter = Counter()
        self.teacher_day_periods: dict[tuple[str, int], list[int]] = {}

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def add(self, lesson_idx: int, slot: Optional[Slot]) -> None:
        if slot is not None:
            self._update(lesson_idx, slot, 1)

    def remove(self, lesson_idx: int, slot: Optional[Slot]) -> None:
        if slot is not None:
            self._update(lesson_idx, slot, -1)

    def _update(self, lesson_idx: int, slot: Slot, step: int) -> None:
        info = self.lessons[lesson_idx]
        day, period, room = slot
        self.teacher_slot[(info.teacher_id, day, period)] += step
        self.room_slot[(room, day, period)] += step
        self.class_slot[(info.class_id, day, period)] += step
        self.teacher_day_load[(info.teacher_id, day)] += step
        self.class_day_load[(info.class_id, day)] += step
        self.class_course_day[(info.class_id, info.course_id, day)] += step

        key = (info.teacher_id, day)
        counts = self.teacher_day_periods.get(key)
        if counts is None:
            counts = [0] * self.num_periods
            self.teacher_day_periods[key] = counts
        counts[period] += step

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def day_counts(self, teacher_id: str, day: int) -> list[int]:
        """Lessons per period position for a teacher on a day (a copy)."""
        counts = self.teacher_day_periods.get((teacher_id, day))
        return list(counts) if counts is not None else [0] * self.num_periods

    def preference_flags(self, teacher_id: str, day: int, period: int) -> tuple[int, int]:
        """(missed a preferred slot, hit an avoided slot) for a slot position."""
        key = (teacher_id, day, period)
        flags = self._preference_cache.get(key)
        if flags is None:
            teacher = self.teachers.get(teacher_id)
            index = self.period_indexes[period]
            if teacher is None:
                flags = (0, 0)
            else:
                flags = (
                    0 if teacher.prefers(day, index) else 1,
                    1 if teacher.avoids(day, index) else 0,
                )
            self._preference_cache[key] = flags
        return flags


# =============================================================================
# Day Shape Helpers
# =============================================================================

def count_gaps(counts: list[int]) -> int:
    """Empty positions between the first and last occupied position."""
    occupied = [p for p, c in enumerate(counts) if c > 0]
    if len(occupied) < 2:
        return 0
    return (occupied[-1] - occupied[0] + 1) - len(occupied)


def split_runs(counts: list[int], linked: list[bool]) -> list[int]:
    """
    Lengths of the runs of consecutive occupied positions.

    A run breaks at an empty position or where two neighbouring positions
    are not back-to-back periods.
    """
    runs: list[int] = []
    run = 0
    for p, c in enumerate(counts):
        if c > 0:
            if run and linked[p - 1]:
                run += 1
            else:
                if run:
                    runs.append(run)
                run = 1
        elif run:
            runs.append(run)
            run = 0
    if run:
        runs.append(run)
    return runs


def run_excess(counts: list[int], linked: list[bool], limit: int) -> int:
    """Positions beyond ``limit`` summed over all runs."""
    return sum(max(0, run - limit) for run in split_runs(counts, linked))
