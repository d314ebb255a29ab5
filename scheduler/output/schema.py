"""
Output schema for solve results and stored slots.

JSON output uses camelCase keys (``by_alias=True``) to match what the
administration backend consumes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

from scheduler.data.models import day_name, minutes_to_time

if TYPE_CHECKING:
    from scheduler.data.catalog import ResourceCatalog
    from scheduler.persistence.database import ScheduleSlotRecord
    from scheduler.problem_builder import Lesson, SkippedRequirement
    from scheduler.search import TimetableSolution


# =============================================================================
# Slots
# =============================================================================

class ScheduleSlot(BaseModel):
    """One assigned lesson."""
    lesson_id: str = Field(alias="lessonId")
    day: int
    period: int
    room_id: str = Field(alias="roomId")
    teacher_id: str = Field(alias="teacherId")
    class_id: str = Field(alias="classId")
    course_id: str = Field(alias="courseId")

    # Optional enriched data
    day_name: Optional[str] = Field(default=None, alias="dayName")
    start_time: Optional[str] = Field(default=None, alias="startTime")  # 'HH:MM'
    end_time: Optional[str] = Field(default=None, alias="endTime")  # 'HH:MM'

    model_config = {"populate_by_name": True}

    @classmethod
    def from_lesson(cls, lesson: Lesson, catalog: Optional[ResourceCatalog] = None) -> ScheduleSlot:
        """Create from an assigned Lesson."""
        slot = cls(
            lessonId=lesson.id,
            day=lesson.day,
            period=lesson.period,
            roomId=lesson.room_id,
            teacherId=lesson.teacher_id,
            classId=lesson.class_id,
            courseId=lesson.course_id,
        )
        return slot.enriched(catalog) if catalog is not None else slot

    @classmethod
    def from_record(cls, record: ScheduleSlotRecord) -> ScheduleSlot:
        """Create from a stored slot row."""
        return cls(
            lessonId=record.lesson_id,
            day=record.day,
            period=record.period,
            roomId=record.room_id,
            teacherId=record.teacher_id,
            classId=record.class_id,
            courseId=record.course_id,
        )

    def enriched(self, catalog: ResourceCatalog) -> ScheduleSlot:
        """Copy with day name and period times filled in."""
        period = catalog.period(self.period)
        return self.model_copy(update={
            "day_name": day_name(self.day),
            "start_time": minutes_to_time(period.start_minutes) if period else None,
            "end_time": minutes_to_time(period.end_minutes) if period else None,
        })

    @property
    def sort_key(self) -> tuple:
        return (self.day, self.period, self.room_id, self.lesson_id)


class UnassignedLesson(BaseModel):
    """A lesson the solver could not place."""
    lesson_id: str = Field(alias="lessonId")
    class_id: str = Field(alias="classId")
    course_id: str = Field(alias="courseId")
    teacher_id: str = Field(alias="teacherId")
    reason: str = "no slot assigned"

    model_config = {"populate_by_name": True}

    @classmethod
    def from_lesson(cls, lesson: Lesson) -> UnassignedLesson:
        return cls(
            lessonId=lesson.id,
            classId=lesson.class_id,
            courseId=lesson.course_id,
            teacherId=lesson.teacher_id,
        )


class SkippedRequirementInfo(BaseModel):
    """A class requirement that produced no lessons."""
    class_id: str = Field(alias="classId")
    course_id: str = Field(alias="courseId")
    weekly_hours: int = Field(alias="weeklyHours")
    reason: str

    model_config = {"populate_by_name": True}

    @classmethod
    def from_skipped(cls, skipped: SkippedRequirement) -> SkippedRequirementInfo:
        return cls(
            classId=skipped.class_id,
            courseId=skipped.course_id,
            weeklyHours=skipped.weekly_hours,
            reason=skipped.reason,
        )


# =============================================================================
# Materialization
# =============================================================================

class MaterializationResult(BaseModel):
    """What the materializer did with a solution."""
    timetable_id: str = Field(alias="timetableId")
    persisted: bool
    slots_written: int = Field(default=0, alias="slotsWritten")
    revision: Optional[int] = None
    unscheduled: list[UnassignedLesson] = Field(default_factory=list)
    reason: Optional[str] = None

    model_config = {"populate_by_name": True}


# =============================================================================
# Solve Result
# =============================================================================

class SolveResult(BaseModel):
    """
    Result of a solve job.

    ``feasible`` is False when hard violations remain; the assignment is
    still returned so the caller can inspect it.
    """
    job_id: str = Field(alias="jobId")
    timetable_id: str = Field(alias="timetableId")
    status: str
    feasible: bool
    final_score: str = Field(alias="finalScore")
    hard_score: int = Field(alias="hardScore")
    soft_score: int = Field(alias="softScore")
    assigned_slots: list[ScheduleSlot] = Field(default_factory=list, alias="assignedSlots")
    unassigned_lessons: list[UnassignedLesson] = Field(default_factory=list, alias="unassignedLessons")
    skipped_requirements: list[SkippedRequirementInfo] = Field(default_factory=list, alias="skippedRequirements")
    breakdown: dict[str, int] = Field(default_factory=dict)
    hard_violations: dict[str, int] = Field(default_factory=dict, alias="hardViolations")
    stats: dict[str, Any] = Field(default_factory=dict)
    materialization: Optional[MaterializationResult] = None

    model_config = {"populate_by_name": True}

    @classmethod
    def from_solution(
        cls,
        solution: TimetableSolution,
        job_id: str = "",
        status: str = "completed",
        materialization: Optional[MaterializationResult] = None,
    ) -> SolveResult:
        catalog = solution.problem.catalog
        slots = [ScheduleSlot.from_lesson(l, catalog) for l in solution.assigned_lessons]
        slots.sort(key=lambda s: s.sort_key)
        return cls(
            jobId=job_id,
            timetableId=solution.problem.timetable_id,
            status=status,
            feasible=solution.feasible,
            finalScore=str(solution.score),
            hardScore=solution.score.hard,
            softScore=solution.score.soft,
            assignedSlots=slots,
            unassignedLessons=[UnassignedLesson.from_lesson(l) for l in solution.unassigned_lessons],
            skippedRequirements=[SkippedRequirementInfo.from_skipped(s) for s in solution.problem.skipped],
            breakdown=solution.breakdown,
            hardViolations=solution.hard_violations,
            stats=solution.stats.to_dict(),
            materialization=materialization,
        )

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)
