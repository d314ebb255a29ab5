"""Tests for construction and the local-search solver."""

from __future__ import annotations

import random
import threading
import time

import pytest

from scheduler.constraints import ConstraintEngine, HardSoftScore, calculate_score
from scheduler.data.models import ClassGroup, Course, CourseRequirement, Room, Teacher
from scheduler.problem_builder import build_problem
from scheduler.search import (
    LocalSearchSolver,
    SolverConfig,
    TerminationReason,
    construct,
    greedy_placement,
    pick_room,
    seed_with_cp_sat,
)

from conftest import make_input


def quick_config(**overrides) -> SolverConfig:
    values = dict(time_budget_seconds=3.0, max_iterations_without_improvement=3000, random_seed=1)
    values.update(overrides)
    return SolverConfig(**values)


def saturated_input(size: int = 24):
    """Every class meets every teacher once on a 4x6 week: each grid cell is fully booked."""
    teachers = [Teacher(id=f"t{i}", name=f"Teacher {i}") for i in range(size)]
    courses = [Course(id=f"k{i}", name=f"Course {i}", teacher_id=f"t{i}") for i in range(size)]
    classes = [
        ClassGroup(id=f"c{j}", name=f"Class {j}", student_count=20, requirements=[
            CourseRequirement(course_id=f"k{i}", weekly_hours=1) for i in range(size)
        ])
        for j in range(size)
    ]
    rooms = [Room(id=f"r{i}", name=f"Room {i}", capacity=30) for i in range(size)]
    return make_input(
        num_days=4, num_periods=6, rooms=rooms, teachers=teachers, courses=courses, classes=classes,
        time_budget=60.0,
    )


# =============================================================================
# Construction
# =============================================================================

class TestPickRoom:
    """Room choice for a lesson at a given (day, period)."""

    @pytest.fixture
    def engine(self):
        schedule_input = make_input(
            rooms=[
                Room(id="big", name="Hall", capacity=100),
                Room(id="snug", name="Room 1", capacity=26),
                Room(id="tiny", name="Room 2", capacity=10),
            ],
            teachers=[Teacher(id="t1", name="Ada")],
            courses=[Course(id="math", name="Maths", teacher_id="t1")],
            classes=[ClassGroup(id="c1", name="6A", student_count=25, requirements=[
                CourseRequirement(course_id="math", weekly_hours=2),
            ])],
        )
        return ConstraintEngine(build_problem(schedule_input, "T1"))

    def test_smallest_fitting_room(self, engine):
        assert pick_room(engine, 0, 0, 0) == 1

    def test_skips_occupied_room(self, engine):
        engine.move(1, (0, 0, 1))
        assert pick_room(engine, 0, 0, 0) == 0

    def test_falls_back_to_largest_free_room(self, engine):
        assert pick_room(engine, 0, 0, 0, taken={0, 1}) == 2


class TestCpSatSeeding:
    """CP-SAT seeding finds a conflict-free start."""

    def test_seed_is_conflict_free(self, school_input):
        engine = ConstraintEngine(build_problem(school_input, "T1"))
        seeds = seed_with_cp_sat(engine, list(range(len(engine.slots))), time_limit_seconds=5)
        assert len(seeds) == len(engine.slots)
        for idx, slot in seeds.items():
            engine.move(idx, slot)
        violations = engine.violations()
        assert violations["teacher_conflict"] == 0
        assert violations["class_conflict"] == 0
        assert violations["room_conflict"] == 0
        assert violations["room_capacity"] == 0

    def test_infeasible_returns_empty(self, clash_input):
        engine = ConstraintEngine(build_problem(clash_input, "T1"))
        assert seed_with_cp_sat(engine, [0, 1], time_limit_seconds=2) == {}

    def test_class_larger_than_every_room_left_out(self):
        schedule_input = make_input(
            rooms=[Room(id="r1", name="A", capacity=10)],
            teachers=[Teacher(id="t1", name="Ada")],
            courses=[Course(id="math", name="Maths", teacher_id="t1")],
            classes=[ClassGroup(id="c1", name="6A", student_count=40, requirements=[
                CourseRequirement(course_id="math", weekly_hours=1),
            ])],
        )
        engine = ConstraintEngine(build_problem(schedule_input, "T1"))
        assert seed_with_cp_sat(engine, [0], time_limit_seconds=2) == {}

    def test_already_cancelled_returns_empty(self, school_input):
        engine = ConstraintEngine(build_problem(school_input, "T1"))
        cancel = threading.Event()
        cancel.set()
        assert seed_with_cp_sat(engine, list(range(len(engine.slots))), 5, cancel_event=cancel) == {}

    def test_cancel_stops_search(self):
        engine = ConstraintEngine(build_problem(saturated_input(), "T1"))
        cancel = threading.Event()
        timer = threading.Timer(0.5, cancel.set)
        timer.start()
        try:
            started = time.monotonic()
            seeds = seed_with_cp_sat(engine, list(range(len(engine.slots))), 60, cancel_event=cancel)
            elapsed = time.monotonic() - started
        finally:
            timer.cancel()
        assert elapsed < 3.0
        assert seeds == {} or len(seeds) == len(engine.slots)


class TestGreedyPlacement:
    """Greedy placement assigns everything when time allows."""

    def test_places_all_lessons(self, school_input):
        engine = ConstraintEngine(build_problem(school_input, "T1"))
        placed = greedy_placement(engine, list(range(len(engine.slots))), time.monotonic() + 10)
        assert placed == len(engine.slots)
        assert engine.violations()["unassigned"] == 0

    def test_stops_when_cancelled(self, school_input):
        engine = ConstraintEngine(build_problem(school_input, "T1"))
        cancel = threading.Event()
        cancel.set()
        placed = greedy_placement(engine, list(range(len(engine.slots))), time.monotonic() + 10, cancel)
        assert placed == 0


class TestConstruct:
    """The construction phase picks its method from the config."""

    def test_cp_sat_method(self, school_input):
        engine = ConstraintEngine(build_problem(school_input, "T1"))
        method = construct(engine, quick_config(), time.monotonic() + 5)
        assert method == "cp_sat"
        assert engine.score.hard == 0

    def test_greedy_method(self, school_input):
        engine = ConstraintEngine(build_problem(school_input, "T1"))
        method = construct(engine, quick_config(construction="greedy"), time.monotonic() + 5)
        assert method == "greedy"
        assert engine.violations()["unassigned"] == 0

    def test_falls_back_to_greedy(self, clash_input):
        engine = ConstraintEngine(build_problem(clash_input, "T1"))
        method = construct(engine, quick_config(), time.monotonic() + 5)
        assert method == "greedy"
        assert engine.violations()["unassigned"] == 0

    def test_nothing_to_place(self):
        engine = ConstraintEngine(build_problem(make_input(), "T1"))
        assert construct(engine, quick_config(), time.monotonic() + 1) == "none"


# =============================================================================
# Local Search
# =============================================================================

class TestSolveScenarios:
    """End-to-end solves on small schools."""

    def test_single_class_distinct_slots(self, single_class_input):
        problem = build_problem(single_class_input, "T1")
        solution = LocalSearchSolver(quick_config()).solve(problem)

        assert solution.score.hard == 0
        assert solution.feasible
        assert len(solution.assigned_lessons) == 3
        slots = {(l.day, l.period) for l in solution.assigned_lessons}
        assert len(slots) == 3

    def test_shared_teacher_single_slot(self, clash_input):
        problem = build_problem(clash_input, "T1")
        solution = LocalSearchSolver(quick_config(time_budget_seconds=1.0)).solve(problem)

        assert len(solution.assigned_lessons) == 2
        assert solution.unassigned_lessons == []
        assert solution.breakdown["teacher_conflict"] == 1
        assert solution.hard_violations == {"teacher_conflict": 1}
        assert not solution.feasible

    def test_school_is_feasible(self, school_input):
        problem = build_problem(school_input, "T1")
        solution = LocalSearchSolver(quick_config()).solve(problem)
        assert solution.feasible
        assert solution.unassigned_lessons == []

    def test_score_matches_written_back_lessons(self, school_input):
        problem = build_problem(school_input, "T1")
        solver = LocalSearchSolver(quick_config())
        solution = solver.solve(problem)
        assert calculate_score(problem, solver.weights, solver.limits) == solution.score

    def test_empty_problem(self):
        solution = LocalSearchSolver(quick_config()).solve(build_problem(make_input(), "T1"))
        assert solution.score == HardSoftScore(0, 0)
        assert solution.stats.termination == TerminationReason.PERFECT_SCORE

    def test_greedy_construction_also_solves(self, school_input):
        problem = build_problem(school_input, "T1")
        solution = LocalSearchSolver(quick_config(construction="greedy")).solve(problem)
        assert solution.feasible
        assert solution.stats.construction_method == "greedy"


class TestTermination:
    """Stop conditions of the search."""

    def test_respects_time_budget(self, school_input):
        problem = build_problem(school_input, "T1")
        config = quick_config(max_iterations_without_improvement=10**9)
        started = time.monotonic()
        solution = LocalSearchSolver(config).solve(problem, time_budget=1.0)
        assert time.monotonic() - started < 3.0
        assert solution.stats.termination in (TerminationReason.TIME_LIMIT, TerminationReason.PERFECT_SCORE)

    def test_no_improvement_limit(self, clash_input):
        problem = build_problem(clash_input, "T1")
        config = quick_config(time_budget_seconds=30, max_iterations_without_improvement=50)
        solution = LocalSearchSolver(config).solve(problem)
        assert solution.stats.termination == TerminationReason.NO_IMPROVEMENT

    def test_cancel_returns_best_so_far(self, school_input):
        problem = build_problem(school_input, "T1")
        cancel = threading.Event()
        cancel.set()
        seen: list[HardSoftScore] = []
        solution = LocalSearchSolver(quick_config()).solve(problem, cancel_event=cancel, on_best=seen.append)
        assert solution.stats.termination in (TerminationReason.CANCELLED, TerminationReason.PERFECT_SCORE)
        assert seen and solution.score <= seen[0]

    def test_cancel_during_seeding_returns_quickly(self):
        problem = build_problem(saturated_input(), "T1")
        config = quick_config(time_budget_seconds=60.0, seed_time_fraction=0.5)
        cancel = threading.Event()
        timer = threading.Timer(0.5, cancel.set)
        timer.start()
        try:
            started = time.monotonic()
            solution = LocalSearchSolver(config).solve(problem, cancel_event=cancel)
            elapsed = time.monotonic() - started
        finally:
            timer.cancel()
        assert elapsed < 3.0
        assert solution.stats.termination in (TerminationReason.CANCELLED, TerminationReason.PERFECT_SCORE)

    def test_best_scores_only_improve(self, school_input):
        problem = build_problem(school_input, "T1")
        seen: list[HardSoftScore] = []
        solution = LocalSearchSolver(quick_config()).solve(problem, on_best=seen.append)
        assert seen == sorted(seen, reverse=True)
        assert solution.score == seen[-1]


class TestAcceptance:
    """Move acceptance rule."""

    def test_hard_worsening_rejected(self):
        rng = random.Random(0)
        assert not LocalSearchSolver._accept(HardSoftScore(1, -100), 10.0, rng)

    def test_hard_improvement_accepted(self):
        rng = random.Random(0)
        assert LocalSearchSolver._accept(HardSoftScore(-1, 100), 0.05, rng)

    def test_soft_non_worsening_accepted(self):
        rng = random.Random(0)
        assert LocalSearchSolver._accept(HardSoftScore(0, 0), 0.05, rng)
        assert LocalSearchSolver._accept(HardSoftScore(0, -3), 0.05, rng)
