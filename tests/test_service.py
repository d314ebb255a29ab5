"""End-to-end tests for the service operations."""

from __future__ import annotations

import pytest
from sqlalchemy import delete

from scheduler.data.models import Course, CourseRequirement
from scheduler.errors import (
    InvalidProblemError,
    JobNotFoundError,
    MaterializationConflictError,
    ScheduleChangeConflictError,
    ScheduleChangeError,
    TeacherNotFoundError,
    TimetableNotFoundError,
)
from scheduler.jobs import JobStatus
from scheduler.output.conflicts import ConflictCategory, ConflictType
from scheduler.persistence import ScheduleSlotRecord
from scheduler.service import TimetableService


@pytest.fixture
def service(session_factory):
    service = TimetableService(session_factory=session_factory, max_workers=2)
    yield service
    service.shutdown()


@pytest.fixture
def solved(service, school_input):
    """A stored school with a materialized schedule."""
    service.register_timetable("T1", school_input)
    job_id = service.start_solve("T1", time_budget=3.0)
    result = service.get_result(job_id, wait=60)
    assert result.materialization.persisted
    return service


class TestTimetables:
    """Registering and removing stored inputs."""

    def test_register(self, service, school_input):
        record = service.register_timetable("T1", school_input, name="Spring term")
        assert record.revision == 0
        assert record.name == "Spring term"
        assert service.list_slots("T1") == []

    def test_unknown_timetable(self, service):
        with pytest.raises(TimetableNotFoundError):
            service.list_slots("nope")
        with pytest.raises(TimetableNotFoundError):
            service.start_solve("nope")
        with pytest.raises(TimetableNotFoundError):
            service.detect_conflicts("nope")
        with pytest.raises(TimetableNotFoundError):
            service.analyze_workload("nope")

    def test_delete(self, service, school_input):
        service.register_timetable("T1", school_input)
        assert service.delete_timetable("T1")
        with pytest.raises(TimetableNotFoundError):
            service.list_slots("T1")

    def test_invalid_inputs_rejected_at_start(self, service, school_input):
        school_input.courses.append(Course(id="art", name="Art", teacher_id="t9"))
        school_input.classes[0].requirements.append(CourseRequirement(course_id="art", weekly_hours=1))
        service.register_timetable("T1", school_input)
        with pytest.raises(InvalidProblemError, match="t9"):
            service.start_solve("T1")


class TestSolve:
    """Solve, poll and collect through the service."""

    def test_solve_and_materialize(self, service, school_input):
        service.register_timetable("T1", school_input)
        job_id = service.start_solve("T1", time_budget=3.0)

        info = service.get_solve_status(job_id)
        assert info.timetable_id == "T1"

        result = service.get_result(job_id, wait=60)
        assert result.status == "completed"
        assert result.feasible
        assert result.final_score.startswith("0hard/")
        assert len(result.assigned_slots) == 17
        assert result.materialization.slots_written == 17
        assert result.materialization.revision == 1

        slots = service.list_slots("T1")
        assert len(slots) == 17
        assert {s.lesson_id for s in slots} == {s.lesson_id for s in result.assigned_slots}

    def test_skipped_requirements_reported(self, service, school_input):
        school_input.courses.append(Course(id="art", name="Art", teacher_id="t1"))
        school_input.classes[0].requirements.append(CourseRequirement(course_id="art", weekly_hours=0))
        service.register_timetable("T1", school_input)

        result = service.get_result(service.start_solve("T1", time_budget=2.0), wait=60)

        assert len(result.assigned_slots) == 17
        assert [(s.class_id, s.course_id, s.weekly_hours) for s in result.skipped_requirements] == [
            (school_input.classes[0].id, "art", 0),
        ]
        assert result.to_dict()["skippedRequirements"][0]["courseId"] == "art"

    def test_infeasible_result_not_persisted(self, service, clash_input):
        service.register_timetable("T1", clash_input)
        result = service.get_result(service.start_solve("T1"), wait=60)

        assert not result.feasible
        assert result.hard_violations == {"teacher_conflict": 1}
        assert not result.materialization.persisted
        assert service.list_slots("T1") == []

    def test_infeasible_result_persisted_when_allowed(self, service, clash_input):
        service.register_timetable("T1", clash_input)
        result = service.get_result(service.start_solve("T1", allow_conflicts=True), wait=60)

        assert result.materialization.persisted
        report = service.detect_conflicts("T1")
        assert report.count(ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING) == 1

    def test_inputs_changed_during_solve(self, service, school_input):
        # Unreachable soft optimum plus a generous stall limit keep the search busy
        school_input.teachers[2].avoided_slots = school_input.teachers[2].preferred_slots
        school_input.config.solver.max_iterations_without_improvement = 10**9
        service.register_timetable("T1", school_input)

        job_id = service.start_solve("T1", time_budget=1.5)
        service.register_timetable("T1", school_input, name="Edited")

        with pytest.raises(MaterializationConflictError, match="revision"):
            service.get_result(job_id, wait=60)
        assert service.get_solve_status(job_id).status == JobStatus.FAILED
        assert service.list_slots("T1") == []

    def test_cancel(self, service, school_input):
        school_input.teachers[2].avoided_slots = school_input.teachers[2].preferred_slots
        school_input.config.solver.max_iterations_without_improvement = 10**9
        service.register_timetable("T1", school_input)

        job_id = service.start_solve("T1", time_budget=30.0)
        service.cancel_solve(job_id)
        result = service.get_result(job_id, wait=60)

        assert result.status == "cancelled"
        assert result.materialization is None
        assert service.list_slots("T1") == []

    def test_unknown_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.get_solve_status("nope")
        with pytest.raises(JobNotFoundError):
            service.cancel_solve("nope")
        with pytest.raises(JobNotFoundError):
            service.get_result("nope")


class TestAnalyses:
    """Read-side operations over the materialized schedule."""

    def test_no_double_bookings(self, solved):
        report = solved.detect_conflicts("T1")
        assert report.timetable_id == "T1"
        assert report.count(ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING) == 0
        assert report.count(ConflictCategory.ROOM, ConflictType.DOUBLE_BOOKING) == 0
        assert report.count(ConflictCategory.CLASS, ConflictType.DOUBLE_BOOKING) == 0
        assert report.count(ConflictCategory.CAPACITY) == 0

    def test_workload_of_every_teacher(self, solved):
        analyses = solved.analyze_workload("T1")
        assert {a.teacher_id: a.total_hours for a in analyses} == {"t1": 8, "t2": 6, "t3": 3}
        assert all(a.comparison is not None for a in analyses)

    def test_workload_of_one_teacher(self, solved):
        analysis = solved.analyze_workload("T1", "t2")
        assert analysis.total_hours == 6
        assert {c.course_id: c.hours for c in analysis.course_breakdown} == {"hist": 2, "sci": 4}

    def test_workload_unknown_teacher(self, solved):
        with pytest.raises(TeacherNotFoundError):
            solved.analyze_workload("T1", "t9")


def free_period(slots, lesson):
    """A (day, period) where the lesson's teacher, class and room are all idle."""
    busy = {
        (s.day, s.period) for s in slots
        if s.teacher_id == lesson.teacher_id or s.class_id == lesson.class_id or s.room_id == lesson.room_id
    }
    return next((d, p) for d in range(5) for p in range(6) if (d, p) not in busy)


class TestScheduleChanges:
    """Manual moves of stored lessons."""

    def test_validate_free_slot(self, solved):
        slots = solved.list_slots("T1")
        lesson = slots[0]
        day, period = free_period(slots, lesson)

        validation = solved.validate_schedule_change("T1", lesson.lesson_id, day=day, period=period)
        assert validation.valid
        assert validation.current == lesson
        assert (validation.proposed.day, validation.proposed.period) == (day, period)
        assert not validation.applied
        assert solved.list_slots("T1") == slots

    def test_validate_clash(self, solved):
        slots = solved.list_slots("T1")
        lesson = slots[0]
        other = next(s for s in slots if (s.day, s.period) != (lesson.day, lesson.period))

        validation = solved.validate_schedule_change(
            "T1", lesson.lesson_id, room_id=other.room_id, day=other.day, period=other.period,
        )
        assert not validation.valid
        assert (ConflictCategory.ROOM, ConflictType.DOUBLE_BOOKING) in {
            (c.category, c.type) for c in validation.blocking_conflicts
        }
        assert solved.list_slots("T1") == slots

    def test_apply_change(self, solved):
        slots = solved.list_slots("T1")
        lesson = slots[0]
        day, period = free_period(slots, lesson)

        validation = solved.apply_schedule_change("T1", lesson.lesson_id, day=day, period=period)
        assert validation.applied
        assert validation.revision == 2

        moved = next(s for s in solved.list_slots("T1") if s.lesson_id == lesson.lesson_id)
        assert (moved.day, moved.period, moved.room_id) == (day, period, lesson.room_id)
        report = solved.detect_conflicts("T1")
        assert report.count(ConflictCategory.TEACHER, ConflictType.DOUBLE_BOOKING) == 0
        assert report.count(ConflictCategory.ROOM, ConflictType.DOUBLE_BOOKING) == 0

    def test_apply_clash_rejected(self, solved):
        slots = solved.list_slots("T1")
        lesson = slots[0]
        other = next(s for s in slots if (s.day, s.period) != (lesson.day, lesson.period))

        with pytest.raises(ScheduleChangeConflictError, match="would create conflicts") as excinfo:
            solved.apply_schedule_change(
                "T1", lesson.lesson_id, room_id=other.room_id, day=other.day, period=other.period,
            )
        assert not excinfo.value.validation.valid
        assert solved.list_slots("T1") == slots
        assert solved.repository.get("T1").revision == 1

    def test_change_to_another_teacher(self, solved):
        slots = solved.list_slots("T1")
        busy = {(s.day, s.period) for s in slots if s.teacher_id == "t3"}
        lesson = next(s for s in slots if s.teacher_id == "t1" and (s.day, s.period) not in busy)

        validation = solved.apply_schedule_change("T1", lesson.lesson_id, teacher_id="t3")
        assert validation.applied
        moved = next(s for s in solved.list_slots("T1") if s.lesson_id == lesson.lesson_id)
        assert moved.teacher_id == "t3"

    @pytest.mark.parametrize("change,message", [
        ({"room_id": "attic"}, "unknown room 'attic'"),
        ({"teacher_id": "t9"}, "unknown teacher 't9'"),
        ({"day": 6}, "day 6 is not a school day"),
        ({"period": 42}, "unknown period 42"),
    ])
    def test_unknown_references(self, solved, change, message):
        lesson_id = solved.list_slots("T1")[0].lesson_id
        with pytest.raises(ScheduleChangeError, match=message):
            solved.validate_schedule_change("T1", lesson_id, **change)

    def test_unknown_lesson(self, solved):
        with pytest.raises(ScheduleChangeError, match="not scheduled"):
            solved.apply_schedule_change("T1", "c9:math:0", day=1)
        with pytest.raises(TimetableNotFoundError):
            solved.validate_schedule_change("nope", "c1:math:0")

    def test_change_outdates_running_solve(self, service, school_input):
        # Unreachable soft optimum plus a generous stall limit keep the search busy
        school_input.teachers[2].avoided_slots = school_input.teachers[2].preferred_slots
        school_input.config.solver.max_iterations_without_improvement = 10**9
        service.register_timetable("T1", school_input)
        service.get_result(service.start_solve("T1", time_budget=1.0), wait=60)

        job_id = service.start_solve("T1", time_budget=1.5, from_current=True)
        slots = service.list_slots("T1")
        day, period = free_period(slots, slots[0])
        service.apply_schedule_change("T1", slots[0].lesson_id, day=day, period=period)

        with pytest.raises(MaterializationConflictError, match="revision"):
            service.get_result(job_id, wait=60)


class TestWarmStart:
    """Solving from the stored schedule."""

    def test_resolve_from_current_slots(self, solved):
        before = {s.lesson_id: (s.day, s.period, s.room_id) for s in solved.list_slots("T1")}
        result = solved.get_result(solved.start_solve("T1", time_budget=2.0, from_current=True), wait=60)

        assert result.feasible
        assert result.stats["constructionMethod"] == "none"
        assert result.materialization.revision == 2
        assert len(result.assigned_slots) == len(before)

    def test_partial_schedule_is_completed(self, solved):
        slots = solved.list_slots("T1")
        with solved.session_factory() as session:
            session.execute(
                delete(ScheduleSlotRecord).where(ScheduleSlotRecord.lesson_id == slots[0].lesson_id)
            )
            session.commit()

        result = solved.get_result(solved.start_solve("T1", time_budget=2.0, from_current=True), wait=60)
        assert result.feasible
        assert result.stats["constructionMethod"] in ("cp_sat", "greedy", "cp_sat+greedy")
        assert len(solved.list_slots("T1")) == 17

    def test_without_stored_slots_constructs(self, service, school_input):
        service.register_timetable("T1", school_input)
        result = service.get_result(service.start_solve("T1", time_budget=2.0, from_current=True), wait=60)
        assert result.stats["constructionMethod"] != "none"
        assert result.materialization.persisted
