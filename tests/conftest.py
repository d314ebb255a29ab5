"""Shared fixtures: small schools built from the input models."""

from __future__ import annotations

from typing import Optional

import pytest

from scheduler.data.models import (
    ClassGroup,
    Course,
    CourseRequirement,
    Period,
    Room,
    RoomType,
    ScheduleInput,
    SchedulerConfig,
    SolverSettings,
    Teacher,
    TimePreference,
)
from scheduler.persistence import create_db_engine, create_session_factory


def make_periods(count: int) -> list[Period]:
    """Hour-long periods from 08:00, five minutes apart."""
    return [
        Period(
            id=f"p{i}",
            index=i,
            name=f"Period {i + 1}",
            start_minutes=480 + 60 * i,
            end_minutes=535 + 60 * i,
        )
        for i in range(count)
    ]


def make_input(
    num_days: int = 5,
    num_periods: int = 6,
    rooms: Optional[list[Room]] = None,
    teachers: Optional[list[Teacher]] = None,
    courses: Optional[list[Course]] = None,
    classes: Optional[list[ClassGroup]] = None,
    time_budget: float = 2.0,
    construction: str = "cp_sat",
) -> ScheduleInput:
    return ScheduleInput(
        config=SchedulerConfig(
            school_name="Test School",
            num_days=num_days,
            solver=SolverSettings(
                time_budget_seconds=time_budget,
                max_iterations_without_improvement=2000,
                construction=construction,
            ),
        ),
        periods=make_periods(num_periods),
        rooms=rooms if rooms is not None else [Room(id="r1", name="Room 101", capacity=30)],
        teachers=teachers or [],
        courses=courses or [],
        classes=classes or [],
    )


@pytest.fixture
def single_class_input() -> ScheduleInput:
    """One class, one course of three weekly hours, two rooms."""
    return make_input(
        rooms=[
            Room(id="r1", name="Room 101", capacity=30),
            Room(id="r2", name="Room 102", capacity=30),
        ],
        teachers=[Teacher(id="t1", name="Ada Lovelace")],
        courses=[Course(id="math", name="Mathematics", teacher_id="t1")],
        classes=[
            ClassGroup(
                id="c1",
                name="6A",
                student_count=25,
                requirements=[CourseRequirement(course_id="math", weekly_hours=3)],
            ),
        ],
    )


@pytest.fixture
def clash_input() -> ScheduleInput:
    """Two classes sharing a teacher with a single slot in the week."""
    return make_input(
        num_days=1,
        num_periods=1,
        rooms=[
            Room(id="r1", name="Room 101", capacity=30),
            Room(id="r2", name="Room 102", capacity=30),
        ],
        teachers=[Teacher(id="t1", name="Ada Lovelace")],
        courses=[Course(id="math", name="Mathematics", teacher_id="t1")],
        classes=[
            ClassGroup(
                id="c1", name="6A", student_count=20,
                requirements=[CourseRequirement(course_id="math", weekly_hours=1)],
            ),
            ClassGroup(
                id="c2", name="6B", student_count=20,
                requirements=[CourseRequirement(course_id="math", weekly_hours=1)],
            ),
        ],
        time_budget=1.0,
    )


@pytest.fixture
def school_input() -> ScheduleInput:
    """A small but complete school that has conflict-free timetables."""
    return make_input(
        rooms=[
            Room(id="r1", name="Room 101", capacity=30),
            Room(id="r2", name="Room 102", capacity=30),
            Room(id="lab", name="Science Lab", capacity=24, type=RoomType.SCIENCE_LAB),
        ],
        teachers=[
            Teacher(id="t1", name="Ada Lovelace", max_weekly_hours=20),
            Teacher(
                id="t2",
                name="Ben Franklin",
                max_weekly_hours=20,
                avoided_slots=[TimePreference(day=4, period=5)],
            ),
            Teacher(
                id="t3",
                name="Cleo Jones",
                max_weekly_hours=10,
                preferred_slots=[TimePreference(day=0), TimePreference(day=1)],
            ),
        ],
        courses=[
            Course(id="math", name="Mathematics", teacher_id="t1"),
            Course(id="sci", name="Science", teacher_id="t2", required_room_type=RoomType.SCIENCE_LAB),
            Course(id="eng", name="English", teacher_id="t3"),
            Course(id="hist", name="History", teacher_id="t2"),
        ],
        classes=[
            ClassGroup(
                id="c1",
                name="6A",
                student_count=22,
                requirements=[
                    CourseRequirement(course_id="math", weekly_hours=4),
                    CourseRequirement(course_id="sci", weekly_hours=2),
                    CourseRequirement(course_id="eng", weekly_hours=3),
                ],
            ),
            ClassGroup(
                id="c2",
                name="6B",
                student_count=24,
                requirements=[
                    CourseRequirement(course_id="math", weekly_hours=4),
                    CourseRequirement(course_id="sci", weekly_hours=2),
                    CourseRequirement(course_id="hist", weekly_hours=2),
                ],
            ),
        ],
    )


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://")
    yield create_session_factory(engine)
    engine.dispose()
