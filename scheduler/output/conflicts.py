"""
Conflict detection over a slot set.

Works on stored slots or on an in-memory solution and produces a typed
report: findings grouped by category, each with a severity and resolution
options, plus statistics, impact and overall severity.

Reports carry no timestamps and every list is sorted, so running the
detector twice on the same slots gives identical reports.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

from scheduler.constraints import ConstraintLimits
from scheduler.data.models import day_name

from .schema import ScheduleSlot

if TYPE_CHECKING:
    from scheduler.data.catalog import ResourceCatalog
    from scheduler.search import TimetableSolution


# =============================================================================
# Enums
# =============================================================================

class ConflictSeverity(str, Enum):
    """Severity of a finding; NONE only describes an empty report."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ConflictSeverity.NONE: 0,
    ConflictSeverity.LOW: 1,
    ConflictSeverity.MEDIUM: 2,
    ConflictSeverity.HIGH: 3,
    ConflictSeverity.CRITICAL: 4,
}


class ConflictCategory(str, Enum):
    TEACHER = "teacher"
    ROOM = "room"
    CLASS = "class"
    CAPACITY = "capacity"
    PREFERENCE = "preference"


class ConflictType(str, Enum):
    DOUBLE_BOOKING = "double_booking"
    OVERLOAD = "overload"
    EXCESSIVE_HOURS = "excessive_hours"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    PREFERRED_SLOT_MISSED = "preferred_slot_missed"
    AVOIDED_SLOT_USED = "avoided_slot_used"
    ROOM_TYPE_MISMATCH = "room_type_mismatch"


# =============================================================================
# Report Models
# =============================================================================

class Conflict(BaseModel):
    """A single finding."""
    category: ConflictCategory
    type: ConflictType
    severity: ConflictSeverity
    entity_id: str = Field(alias="entityId")
    entity_name: str = Field(alias="entityName")
    day: Optional[int] = None
    period: Optional[int] = None
    lesson_ids: list[str] = Field(default_factory=list, alias="lessonIds")
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    resolution_options: list[str] = Field(default_factory=list, alias="resolutionOptions")

    model_config = {"populate_by_name": True}

    @property
    def sort_key(self) -> tuple:
        return (
            -self.severity.rank,
            self.day if self.day is not None else -1,
            self.period if self.period is not None else -1,
            self.entity_id,
            self.type.value,
            tuple(self.lesson_ids),
        )


class ConflictStatistics(BaseModel):
    total: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict, alias="bySeverity")
    by_category: dict[str, int] = Field(default_factory=dict, alias="byCategory")
    by_type: dict[str, int] = Field(default_factory=dict, alias="byType")

    model_config = {"populate_by_name": True}


class ImpactAnalysis(BaseModel):
    """Who is touched by the findings."""
    affected_teachers: list[str] = Field(default_factory=list, alias="affectedTeachers")
    affected_classes: list[str] = Field(default_factory=list, alias="affectedClasses")
    affected_rooms: list[str] = Field(default_factory=list, alias="affectedRooms")
    affected_lessons: int = Field(default=0, alias="affectedLessons")
    affected_students: int = Field(default=0, alias="affectedStudents")

    model_config = {"populate_by_name": True}


class ResolutionSuggestion(BaseModel):
    """Non-binding advice for one conflict type."""
    priority: ConflictSeverity
    conflict_type: ConflictType = Field(alias="conflictType")
    occurrences: int
    suggestion: str

    model_config = {"populate_by_name": True}


class ConflictReport(BaseModel):
    """Complete conflict report for a timetable."""
    timetable_id: str = Field(alias="timetableId")
    overall_severity: ConflictSeverity = Field(alias="overallSeverity")
    has_conflicts: bool = Field(alias="hasConflicts")
    total_conflicts: int = Field(alias="totalConflicts")
    teacher_conflicts: list[Conflict] = Field(default_factory=list, alias="teacherConflicts")
    room_conflicts: list[Conflict] = Field(default_factory=list, alias="roomConflicts")
    class_conflicts: list[Conflict] = Field(default_factory=list, alias="classConflicts")
    capacity_conflicts: list[Conflict] = Field(default_factory=list, alias="capacityConflicts")
    preference_conflicts: list[Conflict] = Field(default_factory=list, alias="preferenceConflicts")
    statistics: ConflictStatistics = Field(default_factory=ConflictStatistics)
    impact: ImpactAnalysis = Field(default_factory=ImpactAnalysis)
    suggestions: list[ResolutionSuggestion] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @property
    def all_conflicts(self) -> list[Conflict]:
        return (
            self.teacher_conflicts +
            self.room_conflicts +
            self.class_conflicts +
            self.capacity_conflicts +
            self.preference_conflicts
        )

    def count(self, category: ConflictCategory, conflict_type: Optional[ConflictType] = None) -> int:
        return sum(
            1 for c in self.all_conflicts
            if c.category == category and (conflict_type is None or c.type == conflict_type)
        )

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Change Validation
# =============================================================================

class ChangeValidation(BaseModel):
    """
    Outcome of checking a manual move of one stored slot.

    A change is valid when it adds no double booking and no capacity finding.
    Softer findings it introduces (preferences, overloads) are listed in
    ``new_conflicts`` but do not block it.
    """
    timetable_id: str = Field(alias="timetableId")
    lesson_id: str = Field(alias="lessonId")
    valid: bool
    current: ScheduleSlot
    proposed: ScheduleSlot
    new_conflicts: list[Conflict] = Field(default_factory=list, alias="newConflicts")
    resolved_conflicts: list[Conflict] = Field(default_factory=list, alias="resolvedConflicts")
    applied: bool = False
    revision: Optional[int] = None

    model_config = {"populate_by_name": True}

    @property
    def blocking_conflicts(self) -> list[Conflict]:
        return [c for c in self.new_conflicts if _blocks_change(c)]

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)


def _blocks_change(conflict: Conflict) -> bool:
    return conflict.type == ConflictType.DOUBLE_BOOKING or conflict.category == ConflictCategory.CAPACITY


def _finding_key(conflict: Conflict) -> tuple:
    # A double booking keeps its identity when another lesson joins it
    lessons = () if conflict.type == ConflictType.DOUBLE_BOOKING else tuple(conflict.lesson_ids)
    return (conflict.category, conflict.type, conflict.entity_id, conflict.day, conflict.period, lessons)


# =============================================================================
# Detector
# =============================================================================

_SUGGESTIONS = {
    ConflictType.DOUBLE_BOOKING: "Move one of the clashing lessons to a free period or another room.",
    ConflictType.OVERLOAD: "Reassign some courses to teachers with spare capacity.",
    ConflictType.EXCESSIVE_HOURS: "Spread the class's lessons over lighter days.",
    ConflictType.CAPACITY_EXCEEDED: "Move the lesson to a larger room or split the class.",
    ConflictType.PREFERRED_SLOT_MISSED: "Swap the lesson into one of the teacher's preferred slots.",
    ConflictType.AVOIDED_SLOT_USED: "Swap the lesson out of the teacher's avoided slot.",
    ConflictType.ROOM_TYPE_MISMATCH: "Move the lesson to a room of the required type.",
}


def capacity_severity(deficit: int, capacity: int) -> ConflictSeverity:
    """Severity by how far the class exceeds the room, relative to its capacity."""
    ratio = deficit / capacity if capacity > 0 else float("inf")
    if ratio <= 0.10:
        return ConflictSeverity.LOW
    if ratio <= 0.25:
        return ConflictSeverity.MEDIUM
    if ratio <= 0.50:
        return ConflictSeverity.HIGH
    return ConflictSeverity.CRITICAL


class ConflictDetector:
    """
    Finds teacher, room, class, capacity and preference conflicts.

    Slots referencing unknown teachers, rooms, classes or courses cannot
    violate the rules that need those entities and are skipped for them.
    """

    def __init__(self, catalog: ResourceCatalog, limits: Optional[ConstraintLimits] = None):
        self.catalog = catalog
        self.limits = limits or ConstraintLimits.from_settings(catalog.config.limits)
        # Overload turns HIGH at the workload analyzer's severe threshold (125% by
        # default) rather than a fixed 120%, so 25h of 20h is MEDIUM here and
        # OVERLOADED (not SEVERELY_OVERLOADED) there.
        self.severe_overload_percent = catalog.config.limits.severe_overload_percent

    def detect_solution(self, solution: TimetableSolution) -> ConflictReport:
        """Detect conflicts in an in-memory solution."""
        slots = [ScheduleSlot.from_lesson(l) for l in solution.assigned_lessons]
        return self.detect(slots, solution.problem.timetable_id)

    def detect(self, slots: list[ScheduleSlot], timetable_id: str) -> ConflictReport:
        slots = sorted(slots, key=lambda s: s.sort_key)

        teacher = self._double_bookings(slots, ConflictCategory.TEACHER, lambda s: s.teacher_id, self._teacher_name)
        teacher += self._teacher_overloads(slots)
        room = self._double_bookings(slots, ConflictCategory.ROOM, lambda s: s.room_id, self._room_name)
        klass = self._double_bookings(slots, ConflictCategory.CLASS, lambda s: s.class_id, self._class_name)
        klass += self._class_excessive_hours(slots)
        capacity = self._capacity(slots)
        preference = self._preferences(slots)

        categories = [teacher, room, klass, capacity, preference]
        for findings in categories:
            findings.sort(key=lambda c: c.sort_key)
        everything = [c for findings in categories for c in findings]

        overall = ConflictSeverity.NONE
        for conflict in everything:
            if conflict.severity.rank > overall.rank:
                overall = conflict.severity

        return ConflictReport(
            timetableId=timetable_id,
            overallSeverity=overall,
            hasConflicts=bool(everything),
            totalConflicts=len(everything),
            teacherConflicts=teacher,
            roomConflicts=room,
            classConflicts=klass,
            capacityConflicts=capacity,
            preferenceConflicts=preference,
            statistics=self._statistics(everything),
            impact=self._impact(everything, slots),
            suggestions=self._suggestions(everything),
        )

    def check_change(self, slots: list[ScheduleSlot], proposed: ScheduleSlot, timetable_id: str) -> ChangeValidation:
        """
        Compare the findings before and after replacing one lesson's slot.

        Args:
            slots: Current slot set, containing ``proposed.lesson_id``
            proposed: The lesson's slot after the change
            timetable_id: Timetable the slots belong to

        Returns:
            Findings the change introduces and removes, and whether it is valid
        """
        current = next(s for s in slots if s.lesson_id == proposed.lesson_id)
        changed = [proposed if s.lesson_id == proposed.lesson_id else s for s in slots]

        before = {_finding_key(c): c for c in self.detect(slots, timetable_id).all_conflicts}
        after = {_finding_key(c): c for c in self.detect(changed, timetable_id).all_conflicts}

        new_conflicts = []
        for key, conflict in after.items():
            previous = before.get(key)
            joined = proposed.lesson_id in conflict.lesson_ids and (
                previous is None or proposed.lesson_id not in previous.lesson_ids
            )
            if previous is None or joined:
                new_conflicts.append(conflict)
        resolved = [c for key, c in before.items() if key not in after]

        blocking = [c for c in new_conflicts if _blocks_change(c)]
        return ChangeValidation(
            timetableId=timetable_id,
            lessonId=proposed.lesson_id,
            valid=not blocking,
            current=current,
            proposed=proposed,
            newConflicts=new_conflicts,
            resolvedConflicts=resolved,
        )

    # -------------------------------------------------------------------------
    # Finders
    # -------------------------------------------------------------------------

    def _double_bookings(self, slots, category, key_fn, name_fn) -> list[Conflict]:
        groups: dict[tuple[str, int, int], list[ScheduleSlot]] = defaultdict(list)
        for slot in slots:
            groups[(key_fn(slot), slot.day, slot.period)].append(slot)

        conflicts = []
        for (entity_id, day, period), members in groups.items():
            if len(members) < 2:
                continue
            lesson_ids = sorted(s.lesson_id for s in members)
            name = name_fn(entity_id)
            conflicts.append(Conflict(
                category=category,
                type=ConflictType.DOUBLE_BOOKING,
                severity=ConflictSeverity.CRITICAL,
                entityId=entity_id,
                entityName=name,
                day=day,
                period=period,
                lessonIds=lesson_ids,
                description=(
                    f"{category.value.capitalize()} {name} has {len(members)} lessons on "
                    f"{day_name(day)} {self._period_label(period)}"
                ),
                details={"count": len(members)},
                resolutionOptions=[
                    f"Move lesson {lesson_id} to another period" for lesson_id in lesson_ids[1:]
                ] + ([f"Assign another room to lesson {lesson_ids[-1]}"] if category == ConflictCategory.ROOM else []),
            ))
        return conflicts

    def _teacher_overloads(self, slots: list[ScheduleSlot]) -> list[Conflict]:
        hours: dict[str, int] = defaultdict(int)
        for slot in slots:
            hours[slot.teacher_id] += 1

        conflicts = []
        for teacher_id, assigned in hours.items():
            teacher = self.catalog.teacher(teacher_id)
            if teacher is None or assigned <= teacher.max_weekly_hours:
                continue
            percentage = assigned / teacher.max_weekly_hours * 100
            conflicts.append(Conflict(
                category=ConflictCategory.TEACHER,
                type=ConflictType.OVERLOAD,
                severity=ConflictSeverity.HIGH if percentage > self.severe_overload_percent else ConflictSeverity.MEDIUM,
                entityId=teacher_id,
                entityName=teacher.name,
                description=(
                    f"Teacher {teacher.name} has {assigned} hours against a capacity of "
                    f"{teacher.max_weekly_hours} ({percentage:.0f}%)"
                ),
                details={
                    "assignedHours": assigned,
                    "maxWeeklyHours": teacher.max_weekly_hours,
                    "percentage": round(percentage, 1),
                },
                resolutionOptions=[
                    f"Reassign {assigned - teacher.max_weekly_hours} hours to another teacher",
                ],
            ))
        return conflicts

    def _class_excessive_hours(self, slots: list[ScheduleSlot]) -> list[Conflict]:
        limit = self.limits.max_class_lessons_per_day
        per_day: dict[tuple[str, int], list[str]] = defaultdict(list)
        for slot in slots:
            per_day[(slot.class_id, slot.day)].append(slot.lesson_id)

        conflicts = []
        for (class_id, day), lesson_ids in per_day.items():
            if len(lesson_ids) <= limit:
                continue
            name = self._class_name(class_id)
            conflicts.append(Conflict(
                category=ConflictCategory.CLASS,
                type=ConflictType.EXCESSIVE_HOURS,
                severity=ConflictSeverity.MEDIUM,
                entityId=class_id,
                entityName=name,
                day=day,
                lessonIds=sorted(lesson_ids),
                description=f"Class {name} has {len(lesson_ids)} lessons on {day_name(day)} (limit {limit})",
                details={"lessons": len(lesson_ids), "limit": limit},
                resolutionOptions=[f"Move {len(lesson_ids) - limit} lessons to another day"],
            ))
        return conflicts

    def _capacity(self, slots: list[ScheduleSlot]) -> list[Conflict]:
        conflicts = []
        for slot in slots:
            room = self.catalog.room(slot.room_id)
            group = self.catalog.class_group(slot.class_id)
            if room is None or group is None:
                continue
            deficit = group.student_count - room.capacity
            if deficit <= 0:
                continue
            larger = sorted(
                (r for r in self.catalog.rooms if r.capacity >= group.student_count),
                key=lambda r: (r.capacity, r.id),
            )
            conflicts.append(Conflict(
                category=ConflictCategory.CAPACITY,
                type=ConflictType.CAPACITY_EXCEEDED,
                severity=capacity_severity(deficit, room.capacity),
                entityId=room.id,
                entityName=room.name,
                day=slot.day,
                period=slot.period,
                lessonIds=[slot.lesson_id],
                description=(
                    f"Class {group.name} ({group.student_count} students) does not fit "
                    f"room {room.name} ({room.capacity} seats)"
                ),
                details={
                    "studentCount": group.student_count,
                    "capacity": room.capacity,
                    "deficit": deficit,
                    "classId": group.id,
                },
                resolutionOptions=(
                    [f"Move to room {r.name}" for r in larger[:3]] or ["Split the class into smaller groups"]
                ),
            ))
        return conflicts

    def _preferences(self, slots: list[ScheduleSlot]) -> list[Conflict]:
        conflicts = []
        for slot in slots:
            teacher = self.catalog.teacher(slot.teacher_id)
            if teacher is not None:
                when = f"{day_name(slot.day)} {self._period_label(slot.period)}"
                if not teacher.prefers(slot.day, slot.period):
                    conflicts.append(self._preference_conflict(
                        slot, teacher.id, teacher.name, ConflictType.PREFERRED_SLOT_MISSED, ConflictSeverity.LOW,
                        f"Lesson {slot.lesson_id} is outside {teacher.name}'s preferred slots ({when})",
                        [f"Preferred: {', '.join(str(p) for p in teacher.preferred_slots)}"],
                    ))
                if teacher.avoids(slot.day, slot.period):
                    conflicts.append(self._preference_conflict(
                        slot, teacher.id, teacher.name, ConflictType.AVOIDED_SLOT_USED, ConflictSeverity.MEDIUM,
                        f"Lesson {slot.lesson_id} falls in a slot {teacher.name} avoids ({when})",
                        [f"Move lesson {slot.lesson_id} to another period"],
                    ))

            course = self.catalog.course(slot.course_id)
            room = self.catalog.room(slot.room_id)
            if course is not None and room is not None and course.required_room_type is not None:
                if room.type != course.required_room_type:
                    matching = sorted(r.id for r in self.catalog.rooms if r.type == course.required_room_type)
                    conflicts.append(self._preference_conflict(
                        slot, room.id, room.name, ConflictType.ROOM_TYPE_MISMATCH, ConflictSeverity.MEDIUM,
                        f"Course {course.name} needs a {course.required_room_type.value} "
                        f"but lesson {slot.lesson_id} is in {room.name} ({room.type.value})",
                        [f"Move to room {r}" for r in matching[:3]] or ["No room of the required type exists"],
                    ))
        return conflicts

    def _preference_conflict(self, slot, entity_id, entity_name, conflict_type, severity, description, options):
        return Conflict(
            category=ConflictCategory.PREFERENCE,
            type=conflict_type,
            severity=severity,
            entityId=entity_id,
            entityName=entity_name,
            day=slot.day,
            period=slot.period,
            lessonIds=[slot.lesson_id],
            description=description,
            resolutionOptions=options,
        )

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    def _statistics(self, conflicts: list[Conflict]) -> ConflictStatistics:
        by_severity = {s.value: 0 for s in ConflictSeverity if s != ConflictSeverity.NONE}
        by_category = {c.value: 0 for c in ConflictCategory}
        by_type: dict[str, int] = {}
        for conflict in conflicts:
            by_severity[conflict.severity.value] += 1
            by_category[conflict.category.value] += 1
            by_type[conflict.type.value] = by_type.get(conflict.type.value, 0) + 1
        return ConflictStatistics(
            total=len(conflicts),
            bySeverity=by_severity,
            byCategory=by_category,
            byType=dict(sorted(by_type.items())),
        )

    def _impact(self, conflicts: list[Conflict], slots: list[ScheduleSlot]) -> ImpactAnalysis:
        by_lesson = {s.lesson_id: s for s in slots}
        lesson_ids: set[str] = set()
        teachers: set[str] = set()
        classes: set[str] = set()
        rooms: set[str] = set()

        for conflict in conflicts:
            lesson_ids.update(conflict.lesson_ids)
            if conflict.category == ConflictCategory.TEACHER:
                teachers.add(conflict.entity_id)
            elif conflict.category == ConflictCategory.CLASS:
                classes.add(conflict.entity_id)
            elif conflict.category == ConflictCategory.ROOM:
                rooms.add(conflict.entity_id)

        for lesson_id in lesson_ids:
            slot = by_lesson.get(lesson_id)
            if slot is not None:
                teachers.add(slot.teacher_id)
                classes.add(slot.class_id)
                rooms.add(slot.room_id)

        students = 0
        for class_id in classes:
            group = self.catalog.class_group(class_id)
            if group is not None:
                students += group.student_count

        return ImpactAnalysis(
            affectedTeachers=sorted(teachers),
            affectedClasses=sorted(classes),
            affectedRooms=sorted(rooms),
            affectedLessons=len(lesson_ids),
            affectedStudents=students,
        )

    def _suggestions(self, conflicts: list[Conflict]) -> list[ResolutionSuggestion]:
        grouped: dict[ConflictType, list[Conflict]] = defaultdict(list)
        for conflict in conflicts:
            grouped[conflict.type].append(conflict)

        suggestions = []
        for conflict_type, members in grouped.items():
            priority = max((c.severity for c in members), key=lambda s: s.rank)
            suggestions.append(ResolutionSuggestion(
                priority=priority,
                conflictType=conflict_type,
                occurrences=len(members),
                suggestion=_SUGGESTIONS[conflict_type],
            ))
        suggestions.sort(key=lambda s: (-s.priority.rank, s.conflict_type.value))
        return suggestions

    # -------------------------------------------------------------------------
    # Names
    # -------------------------------------------------------------------------

    def _teacher_name(self, teacher_id: str) -> str:
        teacher = self.catalog.teacher(teacher_id)
        return teacher.name if teacher else teacher_id

    def _room_name(self, room_id: str) -> str:
        room = self.catalog.room(room_id)
        return room.name if room else room_id

    def _class_name(self, class_id: str) -> str:
        group = self.catalog.class_group(class_id)
        return group.name if group else class_id

    def _period_label(self, index: int) -> str:
        period = self.catalog.period(index)
        return period.label if period else f"period {index}"
