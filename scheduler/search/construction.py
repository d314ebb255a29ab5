"""
Construction phase: give every unassigned lesson an initial slot.

Two methods, applied in order:

1. CP-SAT seeding. A feasibility model over (lesson, day, period) booleans
   with teacher and class at-most-one per slot and room-capacity counting
   constraints. Rooms are then matched per (day, period), largest class
   first. Room suitability is nested (a room that seats ``s`` students
   seats anyone smaller), so the counting constraints guarantee the
   matching exists.
2. Greedy placement for anything still unassigned: most constrained lesson
   first, each placed at the (day, period) with the best incremental score.
   Deadline and cancellation are checked between lessons; lessons not
   reached stay unassigned.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Optional

from ortools.sat.python import cp_model

if TYPE_CHECKING:
    from scheduler.constraints.engine import ConstraintEngine
    from scheduler.constraints.state import Slot
    from .local_search import SolverConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Room Matching
# =============================================================================

def pick_room(
    engine: ConstraintEngine,
    idx: int,
    day: int,
    period: int,
    taken: Optional[set[int]] = None,
) -> int:
    """
    Choose a room position for a lesson at (day, period).

    Free rooms that seat the class are preferred, then rooms of the course's
    required type, then the smallest adequate room. Falls back to the
    largest free room, then to the largest room overall.
    """
    state = engine.state
    info = state.lessons[idx]
    taken = taken or set()

    best: Optional[tuple] = None
    best_room = None
    for room in range(state.num_rooms):
        if room in taken or state.room_slot[(room, day, period)] > 0:
            continue
        capacity = state.room_capacity[room]
        fits = capacity >= info.class_size
        type_ok = info.required_room_type is None or state.room_type[room] == info.required_room_type
        # Smaller keys win: fitting, matching type, snug capacity
        key = (0 if fits else 1, 0 if type_ok else 1, capacity if fits else -capacity, room)
        if best is None or key < best:
            best = key
            best_room = room

    if best_room is not None:
        return best_room
    return max(range(state.num_rooms), key=lambda r: (state.room_capacity[r], -r))


# =============================================================================
# CP-SAT Seeding
# =============================================================================

def seed_with_cp_sat(
    engine: ConstraintEngine,
    lesson_indexes: list[int],
    time_limit_seconds: float,
    num_workers: int = 1,
    random_seed: int = 0,
    cancel_event: Optional[threading.Event] = None,
) -> dict[int, Slot]:
    """
    Find a conflict-free (day, period, room) for the given lessons.

    Lessons already holding a slot are treated as fixed occupants. Lessons
    whose class fits no room are left out of the model. Setting
    ``cancel_event`` stops the CP-SAT search within a fraction of a second.

    Returns:
        Slot per lesson index, empty if no feasible seed was found in time
    """
    state = engine.state
    days = range(state.num_days)
    periods = range(state.num_periods)
    max_capacity = max(state.room_capacity, default=0)

    seeded = [i for i in lesson_indexes if state.lessons[i].class_size <= max_capacity]
    if not seeded or time_limit_seconds <= 0:
        return {}
    if cancel_event is not None and cancel_event.is_set():
        return {}

    model = cp_model.CpModel()
    x: dict[tuple[int, int, int], cp_model.IntVar] = {}
    for i in seeded:
        for d in days:
            for p in periods:
                x[i, d, p] = model.NewBoolVar(f"x_{i}_{d}_{p}")
        model.AddExactlyOne([x[i, d, p] for d in days for p in periods])

    by_teacher: dict[str, list[int]] = defaultdict(list)
    by_class: dict[str, list[int]] = defaultdict(list)
    for i in seeded:
        by_teacher[state.lessons[i].teacher_id].append(i)
        by_class[state.lessons[i].class_id].append(i)

    sizes = sorted({state.lessons[i].class_size for i in seeded})
    at_least = {size: [i for i in seeded if state.lessons[i].class_size >= size] for size in sizes}
    fixed_rooms = _fixed_rooms(engine, set(seeded))

    for d in days:
        for p in periods:
            for teacher_id, members in by_teacher.items():
                free = max(0, 1 - state.teacher_slot[(teacher_id, d, p)])
                model.Add(sum(x[i, d, p] for i in members) <= free)
            for class_id, members in by_class.items():
                free = max(0, 1 - state.class_slot[(class_id, d, p)])
                model.Add(sum(x[i, d, p] for i in members) <= free)

            occupied = fixed_rooms.get((d, p), set())
            for size in sizes:
                rooms_available = sum(
                    1 for r in range(state.num_rooms)
                    if r not in occupied and state.room_capacity[r] >= size
                )
                model.Add(sum(x[i, d, p] for i in at_least[size]) <= rooms_available)

    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = time_limit_seconds
    solver.parameters.num_workers = max(1, num_workers)
    solver.parameters.random_seed = random_seed
    solver.parameters.log_search_progress = False

    status = _solve_until_cancelled(solver, model, cancel_event)
    if cancel_event is not None and cancel_event.is_set():
        logger.info("CP-SAT seeding cancelled after %.2fs", solver.WallTime())
        return {}
    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        logger.info(
            "CP-SAT seeding found no assignment for %d lessons (status %s)",
            len(seeded), solver.StatusName(status),
        )
        return {}

    placed: dict[tuple[int, int], list[int]] = defaultdict(list)
    for (i, d, p), var in x.items():
        if solver.BooleanValue(var):
            placed[d, p].append(i)

    result: dict[int, Slot] = {}
    for (d, p), members in placed.items():
        taken = set(fixed_rooms.get((d, p), set()))
        for i in sorted(members, key=lambda i: (-state.lessons[i].class_size, i)):
            room = pick_room(engine, i, d, p, taken)
            taken.add(room)
            result[i] = (d, p, room)

    logger.info("CP-SAT seeded %d lessons in %.2fs", len(result), solver.WallTime())
    return result


def _solve_until_cancelled(
    solver: cp_model.CpSolver,
    model: cp_model.CpModel,
    cancel_event: Optional[threading.Event],
    poll_seconds: float = 0.05,
) -> int:
    """Run ``solver.Solve`` while a watcher thread stops it once cancelled."""
    if cancel_event is None:
        return solver.Solve(model)

    finished = threading.Event()

    def watch() -> None:
        while not finished.wait(poll_seconds):
            # Repeated so a stop requested before the search starts still lands
            if cancel_event.is_set():
                solver.StopSearch()

    watcher = threading.Thread(target=watch, name="cp-sat-cancel-watch", daemon=True)
    watcher.start()
    try:
        return solver.Solve(model)
    finally:
        finished.set()
        watcher.join()


def _fixed_rooms(engine: ConstraintEngine, excluded: set[int]) -> dict[tuple[int, int], set[int]]:
    """Rooms held by lessons that keep their current slot."""
    occupied: dict[tuple[int, int], set[int]] = defaultdict(set)
    for idx, slot in enumerate(engine.slots):
        if slot is not None and idx not in excluded:
            occupied[slot[0], slot[1]].add(slot[2])
    return occupied


# =============================================================================
# Greedy Placement
# =============================================================================

def greedy_placement(
    engine: ConstraintEngine,
    lesson_indexes: list[int],
    deadline: float,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """
    Place lessons one by one at the best-scoring (day, period).

    Returns:
        Number of lessons placed
    """
    state = engine.state
    teacher_load: dict[str, int] = defaultdict(int)
    for info in state.lessons:
        teacher_load[info.teacher_id] += 1

    # Most constrained first: big classes, then busy teachers
    order = sorted(
        lesson_indexes,
        key=lambda i: (-state.lessons[i].class_size, -teacher_load[state.lessons[i].teacher_id], i),
    )

    placed = 0
    for idx in order:
        if time.monotonic() >= deadline or (cancel_event is not None and cancel_event.is_set()):
            logger.info("Greedy placement stopped early: %d of %d lessons placed", placed, len(order))
            break

        best_delta = None
        best_slot = None
        for d in range(state.num_days):
            for p in range(state.num_periods):
                slot = (d, p, pick_room(engine, idx, d, p))
                delta = engine.evaluate(idx, slot)
                if best_delta is None or delta < best_delta:
                    best_delta = delta
                    best_slot = slot

        if best_slot is not None:
            engine.move(idx, best_slot)
            placed += 1

    return placed


def construct(
    engine: ConstraintEngine,
    config: SolverConfig,
    deadline: float,
    cancel_event: Optional[threading.Event] = None,
    budget: Optional[float] = None,
) -> str:
    """
    Run the construction phase on every unassigned lesson.

    Returns:
        Name of the method that placed the lessons ("cp_sat", "greedy",
        "cp_sat+greedy" or "none")
    """
    pending = [i for i, slot in enumerate(engine.slots) if slot is None]
    if not pending:
        return "none"

    methods: list[str] = []
    if config.construction == "cp_sat":
        remaining = max(0.0, deadline - time.monotonic())
        seeds = seed_with_cp_sat(
            engine,
            pending,
            time_limit_seconds=min(remaining, (budget or config.time_budget_seconds) * config.seed_time_fraction),
            num_workers=config.num_cp_workers,
            random_seed=config.random_seed,
            cancel_event=cancel_event,
        )
        for idx, slot in seeds.items():
            engine.move(idx, slot)
        if seeds:
            methods.append("cp_sat")
        pending = [i for i in pending if i not in seeds]

    if pending:
        greedy_placement(engine, pending, deadline, cancel_event)
        methods.append("greedy")

    return "+".join(methods) or "none"
