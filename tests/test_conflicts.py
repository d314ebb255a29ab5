"""Tests for conflict detection."""

from __future__ import annotations

import pytest

from scheduler.data.catalog import ResourceCatalog
from scheduler.data.models import ClassGroup, LimitSettings, Room, Teacher
from scheduler.output.conflicts import (
    ConflictCategory,
    ConflictDetector,
    ConflictSeverity,
    ConflictType,
    capacity_severity,
)
from scheduler.output.schema import ScheduleSlot
from scheduler.problem_builder import build_problem
from scheduler.search import LocalSearchSolver, SolverConfig

from conftest import make_input


def slot(lesson_id, day, period, room="r1", teacher="t1", klass="c1", course="math") -> ScheduleSlot:
    return ScheduleSlot(
        lessonId=lesson_id,
        day=day,
        period=period,
        roomId=room,
        teacherId=teacher,
        classId=klass,
        courseId=course,
    )


@pytest.fixture
def detector(school_input):
    return ConflictDetector(ResourceCatalog.from_input(school_input))


class TestEmptyReport:
    """No slots, no findings."""

    def test_empty_slot_set(self, detector):
        report = detector.detect([], "T1")
        assert report.overall_severity == ConflictSeverity.NONE
        assert not report.has_conflicts
        assert report.total_conflicts == 0
        assert report.statistics.total == 0
        assert report.suggestions == []

    def test_clean_schedule(self, detector):
        report = detector.detect([
            slot("a", 0, 0, room="r1", teacher="t1", klass="c1", course="math"),
            slot("b", 0, 0, room="r2", teacher="t3", klass="c2", course="eng"),
        ], "T1")
        assert report.overall_severity == ConflictSeverity.NONE


class TestDoubleBookings:
    """Teacher, room and class double bookings are critical."""

    def test_teacher_double_booking(self, detector):
        report = detector.detect([
            slot("a", 1, 2, room="r1", klass="c1"),
            slot("b", 1, 2, room="r2", klass="c2"),
        ], "T1")

        assert report.overall_severity == ConflictSeverity.CRITICAL
        assert report.count(ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING) == 1
        conflict = report.teacher_conflicts[0]
        assert conflict.entity_id == "t1"
        assert conflict.entity_name == "Ada Lovelace"
        assert conflict.lesson_ids == ["a", "b"]
        assert (conflict.day, conflict.period) == (1, 2)
        assert conflict.resolution_options

    def test_room_double_booking(self, detector):
        report = detector.detect([
            slot("a", 0, 0, room="r1", teacher="t1", klass="c1"),
            slot("b", 0, 0, room="r1", teacher="t2", klass="c2", course="hist"),
        ], "T1")
        assert report.count(ConflictCategory.ROOM, ConflictType.DOUBLE_BOOKING) == 1
        assert report.count(ConflictCategory.TEACHER) == 0

    def test_class_double_booking(self, detector):
        report = detector.detect([
            slot("a", 0, 0, room="r1", teacher="t1", klass="c1"),
            slot("b", 0, 0, room="r2", teacher="t3", klass="c1", course="eng"),
        ], "T1")
        assert report.count(ConflictCategory.CLASS, ConflictType.DOUBLE_BOOKING) == 1
        assert report.impact.affected_students == 22


class TestCapacity:
    """Capacity findings are graded by deficit relative to the room."""

    @pytest.mark.parametrize("deficit,capacity,expected", [
        (1, 30, ConflictSeverity.LOW),
        (3, 30, ConflictSeverity.LOW),
        (4, 30, ConflictSeverity.MEDIUM),
        (7, 28, ConflictSeverity.MEDIUM),
        (15, 30, ConflictSeverity.HIGH),
        (16, 30, ConflictSeverity.CRITICAL),
    ])
    def test_capacity_severity(self, deficit, capacity, expected):
        assert capacity_severity(deficit, capacity) == expected

    def test_class_that_fits_exactly(self, detector):
        # 6B has 24 students and the lab seats 24
        report = detector.detect([slot("a", 0, 0, room="lab", klass="c2", teacher="t2", course="sci")], "T1")
        assert report.count(ConflictCategory.CAPACITY) == 0

    def test_capacity_finding(self):
        schedule_input = make_input(
            rooms=[Room(id="r1", name="Room 1", capacity=20), Room(id="r2", name="Hall", capacity=60)],
            classes=[ClassGroup(id="c1", name="6A", student_count=24)],
        )
        report = ConflictDetector(ResourceCatalog.from_input(schedule_input)).detect(
            [slot("a", 0, 0, room="r1")], "T1",
        )
        conflict = report.capacity_conflicts[0]
        assert conflict.severity == ConflictSeverity.MEDIUM
        assert conflict.details["deficit"] == 4
        assert conflict.resolution_options == ["Move to room Hall"]


class TestTeacherAndClassLoad:
    """Overloads and long class days."""

    def test_teacher_overload(self, detector):
        # Cleo can teach 10 hours a week
        slots = [slot(f"l{i}", i % 5, i // 5, teacher="t3", klass=f"c{i}", course="eng", room=f"x{i}") for i in range(12)]
        report = detector.detect(slots, "T1")
        overloads = [c for c in report.teacher_conflicts if c.type == ConflictType.OVERLOAD]
        assert len(overloads) == 1
        assert overloads[0].severity == ConflictSeverity.MEDIUM
        assert overloads[0].details["assignedHours"] == 12

    def test_severe_teacher_overload(self, detector):
        slots = [slot(f"l{i}", i % 5, i // 5, teacher="t3", klass=f"c{i}", course="eng", room=f"x{i}") for i in range(13)]
        report = detector.detect(slots, "T1")
        overload = next(c for c in report.teacher_conflicts if c.type == ConflictType.OVERLOAD)
        assert overload.severity == ConflictSeverity.HIGH

    @pytest.mark.parametrize("hours,expected", [
        (25, ConflictSeverity.MEDIUM),
        (26, ConflictSeverity.HIGH),
    ])
    def test_overload_severity_follows_severe_threshold(self, hours, expected):
        # 125% of a 20 hour week is still only OVERLOADED for workload analysis
        detector = ConflictDetector(ResourceCatalog.from_input(make_input(teachers=[Teacher(id="t1", name="Ada")])))
        slots = [slot(f"l{i}", i % 5, i // 5, klass=f"c{i}", room=f"x{i}") for i in range(hours)]
        overload = next(c for c in detector.detect(slots, "T1").teacher_conflicts if c.type == ConflictType.OVERLOAD)
        assert overload.severity == expected

    def test_overload_severity_threshold_from_config(self, school_input):
        school_input.config.limits = LimitSettings(severe_overload_percent=110.0)
        detector = ConflictDetector(ResourceCatalog.from_input(school_input))
        slots = [slot(f"l{i}", i % 5, i // 5, teacher="t3", klass=f"c{i}", course="eng", room=f"x{i}") for i in range(12)]
        overload = next(c for c in detector.detect(slots, "T1").teacher_conflicts if c.type == ConflictType.OVERLOAD)
        assert overload.severity == ConflictSeverity.HIGH

    def test_class_excessive_hours(self, detector):
        slots = [slot(f"l{i}", 0, i, teacher=f"x{i}", room=f"x{i}") for i in range(7)]
        report = detector.detect(slots, "T1")
        assert report.count(ConflictCategory.CLASS, ConflictType.EXCESSIVE_HOURS) == 1


class TestPreferences:
    """Preference and room-type findings."""

    def test_avoided_slot(self, detector):
        report = detector.detect([slot("a", 4, 5, teacher="t2", klass="c2", course="hist")], "T1")
        assert report.count(ConflictCategory.PREFERENCE, ConflictType.AVOIDED_SLOT_USED) == 1
        assert report.overall_severity == ConflictSeverity.MEDIUM

    def test_preferred_slot_missed(self, detector):
        report = detector.detect([slot("a", 3, 0, teacher="t3", course="eng")], "T1")
        assert report.count(ConflictCategory.PREFERENCE, ConflictType.PREFERRED_SLOT_MISSED) == 1
        assert report.overall_severity == ConflictSeverity.LOW

    def test_room_type_mismatch(self, detector):
        report = detector.detect([slot("a", 0, 0, room="r1", teacher="t2", klass="c2", course="sci")], "T1")
        mismatch = report.preference_conflicts[0]
        assert mismatch.type == ConflictType.ROOM_TYPE_MISMATCH
        assert mismatch.resolution_options == ["Move to room lab"]


class TestReportShape:
    """Reports are deterministic and summarised."""

    @pytest.fixture
    def messy_slots(self):
        return [
            slot("d", 4, 5, room="r1", teacher="t2", klass="c2", course="hist"),
            slot("a", 0, 0, room="r1", teacher="t1", klass="c1"),
            slot("b", 0, 0, room="r1", teacher="t1", klass="c2"),
            slot("c", 2, 1, room="r2", teacher="t3", klass="c1", course="eng"),
        ]

    def test_idempotent(self, detector, messy_slots):
        first = detector.detect(messy_slots, "T1")
        second = detector.detect(list(reversed(messy_slots)), "T1")
        assert first.to_dict() == second.to_dict()

    def test_findings_sorted_by_severity(self, detector, messy_slots):
        report = detector.detect(messy_slots, "T1")
        ranks = [c.severity.rank for c in report.preference_conflicts]
        assert ranks == sorted(ranks, reverse=True)
        assert report.suggestions[0].priority == ConflictSeverity.CRITICAL

    def test_statistics(self, detector, messy_slots):
        report = detector.detect(messy_slots, "T1")
        assert report.statistics.total == report.total_conflicts
        assert report.statistics.by_type["double_booking"] == 2
        assert report.statistics.by_category["teacher"] == 1
        assert report.statistics.by_category["room"] == 1

    def test_json_uses_camel_case(self, detector, messy_slots):
        json_str = detector.detect(messy_slots, "T1").to_json()
        assert '"overallSeverity": "critical"' in json_str
        assert '"teacherConflicts"' in json_str


class TestSolutionDetection:
    """Detection on an in-memory solution agrees with the solver."""

    def test_detect_solution(self, clash_input):
        problem = build_problem(clash_input, "T1")
        solver = LocalSearchSolver(SolverConfig(time_budget_seconds=0.5, max_iterations_without_improvement=500))
        solution = solver.solve(problem)

        report = ConflictDetector(problem.catalog).detect_solution(solution)
        assert report.count(ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING) == 1
        assert report.overall_severity == ConflictSeverity.CRITICAL


class TestChangeValidation:
    """Checking a manual move of one slot against the rest of the schedule."""

    @pytest.fixture
    def slots(self):
        return [
            slot("a", 0, 0, room="r1", teacher="t1", klass="c1"),
            slot("b", 0, 1, room="r2", teacher="t1", klass="c2"),
        ]

    def test_free_slot_is_valid(self, detector, slots):
        proposed = slots[0].model_copy(update={"day": 2, "period": 3})
        validation = detector.check_change(slots, proposed, "T1")
        assert validation.valid
        assert validation.new_conflicts == []
        assert validation.current == slots[0]
        assert validation.proposed.day == 2
        assert not validation.applied

    def test_teacher_clash_blocks(self, detector, slots):
        proposed = slots[0].model_copy(update={"period": 1})
        validation = detector.check_change(slots, proposed, "T1")
        assert not validation.valid
        assert [(c.category, c.type) for c in validation.blocking_conflicts] == [
            (ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING),
        ]
        assert validation.blocking_conflicts[0].lesson_ids == ["a", "b"]

    def test_joining_existing_clash_blocks(self, detector, slots):
        slots[1] = slots[1].model_copy(update={"period": 0})
        slots.append(slot("c", 0, 2, room="lab", teacher="t1", klass="c3"))
        proposed = slots[2].model_copy(update={"period": 0})

        validation = detector.check_change(slots, proposed, "T1")
        assert not validation.valid
        teacher_clash = next(c for c in validation.blocking_conflicts if c.category == ConflictCategory.TEACHER)
        assert teacher_clash.lesson_ids == ["a", "b", "c"]

    def test_moving_out_resolves_clash(self, detector, slots):
        slots[1] = slots[1].model_copy(update={"period": 0})
        proposed = slots[1].model_copy(update={"period": 4})

        validation = detector.check_change(slots, proposed, "T1")
        assert validation.valid
        assert [(c.category, c.type) for c in validation.resolved_conflicts] == [
            (ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING),
        ]

    def test_room_too_small_blocks(self):
        schedule_input = make_input(
            rooms=[Room(id="r1", name="A", capacity=30), Room(id="tiny", name="Closet", capacity=10)],
            teachers=[Teacher(id="t1", name="Ada")],
            classes=[ClassGroup(id="c1", name="6A", student_count=22)],
        )
        detector = ConflictDetector(ResourceCatalog.from_input(schedule_input))
        current = slot("a", 0, 0)
        validation = detector.check_change([current], current.model_copy(update={"room_id": "tiny"}), "T1")
        assert not validation.valid
        assert validation.blocking_conflicts[0].category == ConflictCategory.CAPACITY

    def test_soft_findings_do_not_block(self, detector):
        lab_lesson = slot("s", 1, 1, room="lab", teacher="t2", klass="c1", course="sci")
        validation = detector.check_change([lab_lesson], lab_lesson.model_copy(update={"room_id": "r1"}), "T1")
        assert validation.valid
        assert [c.type for c in validation.new_conflicts] == [ConflictType.ROOM_TYPE_MISMATCH]
        assert validation.blocking_conflicts == []
