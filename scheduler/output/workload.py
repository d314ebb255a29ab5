"""
Teacher workload analysis.

One slot counts as one teaching hour. For each teacher the analyzer reports
weekly hours against capacity, a per-day breakdown (hours, gaps, longest
consecutive run), course and room breakdowns, schedule issues and
recommendations. Analyzing every teacher also ranks them against the
average.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

from scheduler.constraints import count_gaps, split_runs
from scheduler.data.models import day_name
from scheduler.errors import TeacherNotFoundError

from .schema import ScheduleSlot

if TYPE_CHECKING:
    from scheduler.data.catalog import ResourceCatalog
    from scheduler.data.models import LimitSettings, Teacher


# =============================================================================
# Enums
# =============================================================================

class WorkloadStatus(str, Enum):
    UNDERUTILIZED = "underutilized"
    OPTIMAL = "optimal"
    OVERLOADED = "overloaded"
    SEVERELY_OVERLOADED = "severely_overloaded"


class DayEfficiency(str, Enum):
    HIGH = "high"  # no gaps
    MEDIUM = "medium"  # one gap
    LOW = "low"


class RecommendationType(str, Enum):
    REDUCE_LOAD = "reduce_load"
    INCREASE_LOAD = "increase_load"
    OPTIMIZE_SCHEDULE = "optimize_schedule"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Ranking(str, Enum):
    TOP_25 = "top_25"
    AVERAGE = "average"
    BOTTOM_25 = "bottom_25"


@dataclass
class WorkloadThresholds:
    """Percent-of-capacity boundaries between workload statuses."""
    underutilized_percent: float = 80.0
    overloaded_percent: float = 100.0
    severe_overload_percent: float = 125.0
    max_consecutive_hours: int = 4

    @classmethod
    def from_settings(cls, settings: Optional[LimitSettings]) -> "WorkloadThresholds":
        if settings is None:
            return cls()
        return cls(
            underutilized_percent=settings.underutilized_percent,
            overloaded_percent=settings.overloaded_percent,
            severe_overload_percent=settings.severe_overload_percent,
            max_consecutive_hours=settings.max_consecutive_hours,
        )

    def classify(self, percentage: float) -> WorkloadStatus:
        if percentage > self.severe_overload_percent:
            return WorkloadStatus.SEVERELY_OVERLOADED
        if percentage > self.overloaded_percent:
            return WorkloadStatus.OVERLOADED
        if percentage < self.underutilized_percent:
            return WorkloadStatus.UNDERUTILIZED
        return WorkloadStatus.OPTIMAL


# =============================================================================
# Analysis Models
# =============================================================================

class DailyWorkload(BaseModel):
    day: int
    day_name: str = Field(alias="dayName")
    hours: int
    periods: list[int] = Field(default_factory=list)
    gaps: int = 0
    consecutive_hours: int = Field(default=0, alias="consecutiveHours")
    efficiency: DayEfficiency = DayEfficiency.HIGH

    model_config = {"populate_by_name": True}


class CourseWorkload(BaseModel):
    course_id: str = Field(alias="courseId")
    course_name: str = Field(alias="courseName")
    hours: int
    classes: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RoomUsage(BaseModel):
    room_id: str = Field(alias="roomId")
    room_name: str = Field(alias="roomName")
    hours: int

    model_config = {"populate_by_name": True}


class Recommendation(BaseModel):
    type: RecommendationType
    priority: Priority
    description: str
    expected_impact: str = Field(alias="expectedImpact")

    model_config = {"populate_by_name": True}


class WorkloadComparison(BaseModel):
    average_hours: float = Field(alias="averageHours")
    difference_from_average: float = Field(alias="differenceFromAverage")
    ranking: Ranking

    model_config = {"populate_by_name": True}


class WorkloadAnalysis(BaseModel):
    """Workload of one teacher in one timetable."""
    timetable_id: str = Field(alias="timetableId")
    teacher_id: str = Field(alias="teacherId")
    teacher_name: str = Field(alias="teacherName")
    total_hours: int = Field(alias="totalHours")
    max_weekly_hours: int = Field(alias="maxWeeklyHours")
    workload_percentage: float = Field(alias="workloadPercentage")
    status: WorkloadStatus
    daily_breakdown: list[DailyWorkload] = Field(default_factory=list, alias="dailyBreakdown")
    course_breakdown: list[CourseWorkload] = Field(default_factory=list, alias="courseBreakdown")
    room_usage: list[RoomUsage] = Field(default_factory=list, alias="roomUsage")
    total_gaps: int = Field(default=0, alias="totalGaps")
    schedule_issues: list[str] = Field(default_factory=list, alias="scheduleIssues")
    recommendations: list[Recommendation] = Field(default_factory=list)
    comparison: Optional[WorkloadComparison] = None

    model_config = {"populate_by_name": True}

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Analyzer
# =============================================================================

class WorkloadAnalyzer:
    """
    Computes workload analyses from a slot set. Read-only.

    Example:
        >>> analyzer = WorkloadAnalyzer(catalog)
        >>> analyzer.analyze(slots, "t1", "T1").status
        <WorkloadStatus.OVERLOADED: 'overloaded'>
    """

    def __init__(self, catalog: ResourceCatalog, thresholds: Optional[WorkloadThresholds] = None):
        self.catalog = catalog
        self.thresholds = thresholds or WorkloadThresholds.from_settings(catalog.config.limits)
        indexes = [p.index for p in catalog.periods]
        self._positions = {index: pos for pos, index in enumerate(indexes)}
        self._linked = [catalog.are_consecutive(a, b) for a, b in zip(indexes, indexes[1:])]

    def analyze(self, slots: list[ScheduleSlot], teacher_id: str, timetable_id: str = "") -> WorkloadAnalysis:
        """
        Analyze one teacher.

        Raises:
            TeacherNotFoundError: The teacher is not in the catalog
        """
        teacher = self.catalog.teacher(teacher_id)
        if teacher is None:
            raise TeacherNotFoundError(teacher_id)
        own = sorted((s for s in slots if s.teacher_id == teacher_id), key=lambda s: s.sort_key)
        return self._analyze_teacher(teacher, own, timetable_id)

    def analyze_all(self, slots: list[ScheduleSlot], timetable_id: str = "") -> list[WorkloadAnalysis]:
        """Analyze every teacher, with comparison to the average workload."""
        by_teacher: dict[str, list[ScheduleSlot]] = defaultdict(list)
        for slot in sorted(slots, key=lambda s: s.sort_key):
            by_teacher[slot.teacher_id].append(slot)

        analyses = [
            self._analyze_teacher(teacher, by_teacher.get(teacher.id, []), timetable_id)
            for teacher in sorted(self.catalog.teachers, key=lambda t: t.id)
        ]
        if not analyses:
            return analyses

        average = sum(a.total_hours for a in analyses) / len(analyses)
        rankings = self._rankings(analyses)
        for analysis in analyses:
            analysis.comparison = WorkloadComparison(
                averageHours=round(average, 2),
                differenceFromAverage=round(analysis.total_hours - average, 2),
                ranking=rankings[analysis.teacher_id],
            )
        return analyses

    # -------------------------------------------------------------------------
    # Per Teacher
    # -------------------------------------------------------------------------

    def _analyze_teacher(self, teacher: Teacher, slots: list[ScheduleSlot], timetable_id: str) -> WorkloadAnalysis:
        total = len(slots)
        percentage = total / teacher.max_weekly_hours * 100
        status = self.thresholds.classify(percentage)

        daily = [self._daily(day, [s for s in slots if s.day == day]) for day in self.catalog.days]
        total_gaps = sum(d.gaps for d in daily)

        return WorkloadAnalysis(
            timetableId=timetable_id,
            teacherId=teacher.id,
            teacherName=teacher.name,
            totalHours=total,
            maxWeeklyHours=teacher.max_weekly_hours,
            workloadPercentage=round(percentage, 2),
            status=status,
            dailyBreakdown=daily,
            courseBreakdown=self._courses(slots),
            roomUsage=self._rooms(slots),
            totalGaps=total_gaps,
            scheduleIssues=self._issues(daily),
            recommendations=self._recommendations(teacher, total, status, total_gaps),
        )

    def _daily(self, day: int, slots: list[ScheduleSlot]) -> DailyWorkload:
        counts = [0] * len(self._positions)
        for slot in slots:
            pos = self._positions.get(slot.period)
            if pos is not None:
                counts[pos] += 1

        gaps = count_gaps(counts)
        runs = split_runs(counts, self._linked)
        if gaps == 0:
            efficiency = DayEfficiency.HIGH
        elif gaps == 1:
            efficiency = DayEfficiency.MEDIUM
        else:
            efficiency = DayEfficiency.LOW

        return DailyWorkload(
            day=day,
            dayName=day_name(day),
            hours=len(slots),
            periods=sorted({s.period for s in slots}),
            gaps=gaps,
            consecutiveHours=max(runs, default=0),
            efficiency=efficiency,
        )

    def _courses(self, slots: list[ScheduleSlot]) -> list[CourseWorkload]:
        hours: dict[str, int] = defaultdict(int)
        classes: dict[str, set[str]] = defaultdict(set)
        for slot in slots:
            hours[slot.course_id] += 1
            classes[slot.course_id].add(slot.class_id)

        result = []
        for course_id in sorted(hours):
            course = self.catalog.course(course_id)
            result.append(CourseWorkload(
                courseId=course_id,
                courseName=course.name if course else course_id,
                hours=hours[course_id],
                classes=sorted(classes[course_id]),
            ))
        return result

    def _rooms(self, slots: list[ScheduleSlot]) -> list[RoomUsage]:
        hours: dict[str, int] = defaultdict(int)
        for slot in slots:
            hours[slot.room_id] += 1

        result = []
        for room_id in sorted(hours, key=lambda r: (-hours[r], r)):
            room = self.catalog.room(room_id)
            result.append(RoomUsage(roomId=room_id, roomName=room.name if room else room_id, hours=hours[room_id]))
        return result

    def _issues(self, daily: list[DailyWorkload]) -> list[str]:
        issues = []
        limit = self.thresholds.max_consecutive_hours
        for day in daily:
            if day.consecutive_hours > limit:
                issues.append(f"{day.day_name}: {day.consecutive_hours} consecutive hours (limit {limit})")
            if day.gaps >= 2:
                issues.append(f"{day.day_name}: {day.gaps} free periods between lessons")
        return issues

    def _recommendations(
        self,
        teacher: Teacher,
        total: int,
        status: WorkloadStatus,
        total_gaps: int,
    ) -> list[Recommendation]:
        recommendations = []
        capacity = teacher.max_weekly_hours

        if status in (WorkloadStatus.OVERLOADED, WorkloadStatus.SEVERELY_OVERLOADED):
            recommendations.append(Recommendation(
                type=RecommendationType.REDUCE_LOAD,
                priority=Priority.HIGH if status == WorkloadStatus.SEVERELY_OVERLOADED else Priority.MEDIUM,
                description=f"Reduce workload by {total - capacity} hours",
                expectedImpact="Brings the teacher back within weekly capacity",
            ))
        elif status == WorkloadStatus.UNDERUTILIZED:
            target = math.ceil(capacity * self.thresholds.underutilized_percent / 100)
            recommendations.append(Recommendation(
                type=RecommendationType.INCREASE_LOAD,
                priority=Priority.LOW,
                description=f"Can take {max(target - total, 1)} more hours",
                expectedImpact="Better use of available teaching capacity",
            ))

        if total_gaps > 0:
            recommendations.append(Recommendation(
                type=RecommendationType.OPTIMIZE_SCHEDULE,
                priority=Priority.MEDIUM if total_gaps >= 3 else Priority.LOW,
                description=f"Compact the schedule to remove {total_gaps} free periods",
                expectedImpact="Fewer idle periods between lessons",
            ))
        return recommendations

    @staticmethod
    def _rankings(analyses: list[WorkloadAnalysis]) -> dict[str, Ranking]:
        """Quartile ranking by hours; fewer than four teachers all rank AVERAGE."""
        if len(analyses) < 4:
            return {a.teacher_id: Ranking.AVERAGE for a in analyses}

        ordered = sorted(analyses, key=lambda a: (-a.total_hours, a.teacher_id))
        quarter = len(ordered) / 4
        rankings = {}
        for position, analysis in enumerate(ordered):
            if position < quarter:
                rankings[analysis.teacher_id] = Ranking.TOP_25
            elif position >= len(ordered) - quarter:
                rankings[analysis.teacher_id] = Ranking.BOTTOM_25
            else:
                rankings[analysis.teacher_id] = Ranking.AVERAGE
        return rankings
