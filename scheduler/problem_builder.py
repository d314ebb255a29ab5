"""
Problem construction: expand weekly-hour requirements into lessons.

Each (class group, course) requirement of ``weekly_hours`` hours becomes that
many Lesson entities. A Lesson's teacher is fixed by its course; its day,
period and room are the planning variables the solver assigns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional

from .data.catalog import ResourceCatalog
from .data.models import ScheduleInput
from .errors import InvalidProblemError

if TYPE_CHECKING:
    from .output.schema import ScheduleSlot

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Lesson:
    """One weekly occurrence of a course for a class group."""
    id: str
    class_id: str
    course_id: str
    teacher_id: str
    occurrence: int

    # Planning variables
    day: Optional[int] = None
    period: Optional[int] = None  # period index (ordinal), not list position
    room_id: Optional[str] = None

    @property
    def is_assigned(self) -> bool:
        return self.day is not None and self.period is not None and self.room_id is not None

    def assign(self, day: int, period: int, room_id: str) -> None:
        self.day = day
        self.period = period
        self.room_id = room_id

    def unassign(self) -> None:
        self.day = None
        self.period = None
        self.room_id = None


@dataclass
class SkippedRequirement:
    """A requirement that produced no lessons."""
    class_id: str
    course_id: str
    weekly_hours: int
    reason: str


@dataclass
class TimetableProblem:
    """
    Everything a solve needs: the resource snapshot and the lessons to place.

    ``timetable_uid`` and ``revision`` record which version of the stored
    timetable the problem was built from, so the materializer can refuse to
    write into a timetable that changed in the meantime.
    """
    timetable_id: str
    catalog: ResourceCatalog
    lessons: list[Lesson]
    skipped: list[SkippedRequirement] = field(default_factory=list)
    timetable_uid: Optional[str] = None
    revision: Optional[int] = None

    @property
    def assigned_lessons(self) -> list[Lesson]:
        return [l for l in self.lessons if l.is_assigned]

    @property
    def unassigned_lessons(self) -> list[Lesson]:
        return [l for l in self.lessons if not l.is_assigned]

    def lesson(self, lesson_id: str) -> Optional[Lesson]:
        for lesson in self.lessons:
            if lesson.id == lesson_id:
                return lesson
        return None

    def assign_from(self, slots: Iterable[ScheduleSlot]) -> int:
        """
        Give lessons the slots they hold in a stored schedule, matched by lesson id.

        Slots for lessons the problem no longer has are ignored. Lessons
        whose stored slot names a day, period or room the catalog lacks are
        left unassigned.

        Returns:
            Number of lessons assigned
        """
        by_lesson = {slot.lesson_id: slot for slot in slots}
        catalog = self.catalog
        assigned = 0
        for lesson in self.lessons:
            slot = by_lesson.get(lesson.id)
            if slot is None:
                continue
            if (
                not 0 <= slot.day < catalog.num_days
                or catalog.period(slot.period) is None
                or catalog.room(slot.room_id) is None
            ):
                continue
            lesson.assign(slot.day, slot.period, slot.room_id)
            assigned += 1
        return assigned

    def summary(self) -> dict[str, Any]:
        """Counts used for logging and the CLI."""
        return {
            "timetable_id": self.timetable_id,
            "lessons": len(self.lessons),
            "skipped_requirements": len(self.skipped),
            "classes": len({l.class_id for l in self.lessons}),
            "teachers": len({l.teacher_id for l in self.lessons}),
            "rooms": len(self.catalog.rooms),
            "days": self.catalog.num_days,
            "periods_per_day": len(self.catalog.periods),
            "slots_available": self.catalog.slots_per_week * len(self.catalog.rooms),
        }


# =============================================================================
# Builder
# =============================================================================

class ProblemBuilder:
    """
    Builds a TimetableProblem from validated input.

    Example:
        >>> problem = ProblemBuilder(schedule_input).build("T1")
        >>> len(problem.lessons)
        27
    """

    def __init__(self, schedule_input: ScheduleInput):
        self.input = schedule_input
        self.catalog = ResourceCatalog.from_input(schedule_input)

    def validate(self) -> list[str]:
        """
        Collect every issue that prevents building a problem.

        Returns:
            Human-readable issue descriptions (empty when the input is usable)
        """
        issues: list[str] = []
        catalog = self.catalog

        if not catalog.days:
            issues.append("No school days configured")
        if not catalog.periods:
            issues.append("No periods defined")
        if not catalog.rooms:
            issues.append("No rooms defined")

        for group in catalog.classes:
            seen_courses: set[str] = set()
            for req in group.requirements:
                if req.course_id in seen_courses:
                    issues.append(f"Class {group.id}: duplicate requirement for course '{req.course_id}'")
                    continue
                seen_courses.add(req.course_id)

                course = catalog.course(req.course_id)
                if course is None:
                    issues.append(f"Class {group.id}: unknown course '{req.course_id}'")
                    continue
                if req.weekly_hours <= 0:
                    continue
                if not course.teacher_id:
                    issues.append(f"Course {course.id}: required by class {group.id} but has no teacher")
                elif catalog.teacher(course.teacher_id) is None:
                    issues.append(f"Course {course.id}: unknown teacher '{course.teacher_id}'")

        return issues

    def build(
        self,
        timetable_id: str,
        timetable_uid: Optional[str] = None,
        revision: Optional[int] = None,
    ) -> TimetableProblem:
        """
        Expand requirements into lessons.

        Lessons are ordered by class id, then course id, then occurrence, so
        the same input always yields the same lesson list.

        Raises:
            InvalidProblemError: If any reference is broken or the catalog
                has no periods or rooms
        """
        issues = self.validate()
        if issues:
            raise InvalidProblemError(issues)

        lessons: list[Lesson] = []
        skipped: list[SkippedRequirement] = []

        for group in sorted(self.catalog.classes, key=lambda c: c.id):
            for req in sorted(group.requirements, key=lambda r: r.course_id):
                if req.weekly_hours <= 0:
                    skipped.append(SkippedRequirement(
                        class_id=group.id,
                        course_id=req.course_id,
                        weekly_hours=req.weekly_hours,
                        reason="non-positive weekly hours",
                    ))
                    logger.warning(
                        "Skipping requirement %s/%s: weekly_hours=%d",
                        group.id, req.course_id, req.weekly_hours,
                    )
                    continue

                course = self.catalog.course(req.course_id)
                for occurrence in range(req.weekly_hours):
                    lessons.append(Lesson(
                        id=f"{group.id}:{course.id}:{occurrence}",
                        class_id=group.id,
                        course_id=course.id,
                        teacher_id=course.teacher_id,
                        occurrence=occurrence,
                    ))

        problem = TimetableProblem(
            timetable_id=timetable_id,
            catalog=self.catalog,
            lessons=lessons,
            skipped=skipped,
            timetable_uid=timetable_uid,
            revision=revision,
        )
        logger.info("Built problem %s: %s", timetable_id, problem.summary())
        return problem


def build_problem(
    schedule_input: ScheduleInput,
    timetable_id: str,
    timetable_uid: Optional[str] = None,
    revision: Optional[int] = None,
) -> TimetableProblem:
    """Convenience wrapper around ProblemBuilder."""
    return ProblemBuilder(schedule_input).build(timetable_id, timetable_uid, revision)
