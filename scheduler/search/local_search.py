"""
Time-bounded local search for timetabling.

After the construction phase the solver runs simulated annealing over two
move types:

- Change move: one lesson to a random (day, period, room)
- Swap move: two lessons exchange their slots

A move that adds hard violations is always rejected, a move that removes
some is always accepted, and a move that keeps the hard count is accepted
with probability ``exp(-soft_delta / temperature)``. The best assignment
seen is kept; only a strictly better score replaces it, so ties go to the
first one found.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from scheduler.constraints import (
    ConstraintEngine,
    ConstraintLimits,
    ConstraintWeights,
    HardSoftScore,
    HARD_RULES,
    ZERO_SCORE,
)
from scheduler.data.models import SolverSettings
from scheduler.problem_builder import Lesson, TimetableProblem

from .construction import construct

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SolverConfig:
    """Search parameters."""
    time_budget_seconds: float = 30.0
    max_iterations_without_improvement: int = 20000
    construction: str = "cp_sat"  # "cp_sat" or "greedy"
    seed_time_fraction: float = 0.3
    swap_probability: float = 0.3
    conflict_focus: float = 0.8  # Chance of moving a conflicted lesson while hard > 0
    initial_temperature: float = 10.0
    cooling_rate: float = 0.9995  # Per iteration
    min_temperature: float = 0.05
    reheat_after: int = 2000  # Iterations without a new best before reheating
    random_seed: int = 0
    num_cp_workers: int = 1

    @classmethod
    def from_settings(cls, settings: Optional[SolverSettings]) -> "SolverConfig":
        if settings is None:
            return cls()
        return cls(
            time_budget_seconds=settings.time_budget_seconds,
            max_iterations_without_improvement=settings.max_iterations_without_improvement,
            construction=settings.construction,
            seed_time_fraction=settings.seed_time_fraction,
            random_seed=settings.random_seed,
        )


class TerminationReason(str, Enum):
    """Why the search stopped."""
    TIME_LIMIT = "time_limit"
    NO_IMPROVEMENT = "no_improvement"
    PERFECT_SCORE = "perfect_score"
    CANCELLED = "cancelled"


# =============================================================================
# Result
# =============================================================================

@dataclass
class SolveStats:
    """Counters collected during a solve."""
    construction_method: str = "none"
    construction_score: Optional[HardSoftScore] = None
    iterations: int = 0
    accepted_moves: int = 0
    improvements: int = 0
    elapsed_seconds: float = 0.0
    termination: TerminationReason = TerminationReason.TIME_LIMIT

    def to_dict(self) -> dict[str, Any]:
        return {
            "constructionMethod": self.construction_method,
            "constructionScore": str(self.construction_score) if self.construction_score else None,
            "iterations": self.iterations,
            "acceptedMoves": self.accepted_moves,
            "improvements": self.improvements,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "termination": self.termination.value,
        }


@dataclass
class TimetableSolution:
    """Best assignment found for a problem, with its score."""
    problem: TimetableProblem
    score: HardSoftScore
    breakdown: dict[str, int] = field(default_factory=dict)
    stats: SolveStats = field(default_factory=SolveStats)

    @property
    def feasible(self) -> bool:
        return self.score.is_feasible

    @property
    def assigned_lessons(self) -> list[Lesson]:
        return self.problem.assigned_lessons

    @property
    def unassigned_lessons(self) -> list[Lesson]:
        return self.problem.unassigned_lessons

    @property
    def hard_violations(self) -> dict[str, int]:
        """Hard rules still violated, with their counts."""
        hard_names = {rule.name for rule in HARD_RULES}
        return {name: count for name, count in self.breakdown.items() if name in hard_names and count}


# =============================================================================
# Solver
# =============================================================================

class LocalSearchSolver:
    """
    Construction followed by simulated annealing, bounded by wall-clock time.

    Each call to ``solve`` owns its engine, random generator and deadline,
    so one solver instance can serve concurrent jobs.

    Example:
        >>> solver = LocalSearchSolver(SolverConfig(time_budget_seconds=5))
        >>> solution = solver.solve(problem)
        >>> solution.score
        HardSoftScore(hard=0, soft=42)
    """

    def __init__(
        self,
        config: Optional[SolverConfig] = None,
        weights: Optional[ConstraintWeights] = None,
        limits: Optional[ConstraintLimits] = None,
    ):
        self.config = config or SolverConfig()
        self.weights = weights or ConstraintWeights()
        self.limits = limits or ConstraintLimits()

    def solve(
        self,
        problem: TimetableProblem,
        time_budget: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        on_best: Optional[Callable[[HardSoftScore], None]] = None,
    ) -> TimetableSolution:
        """
        Search for the best assignment within the time budget.

        The best assignment found is written back onto the problem's
        lessons. Never raises on unsatisfiable problems; the returned score
        tells how many hard violations remain.

        Args:
            problem: Problem to solve; lessons may carry a starting assignment
            time_budget: Seconds to spend; defaults to the configured budget
            cancel_event: When set, the search stops and returns its best
            on_best: Called with every new best score

        Returns:
            TimetableSolution with the best score and per-rule breakdown
        """
        config = self.config
        started = time.monotonic()
        budget = time_budget if time_budget is not None else config.time_budget_seconds
        deadline = started + budget
        rng = random.Random(config.random_seed)
        stats = SolveStats()

        engine = ConstraintEngine(problem, self.weights, self.limits)
        stats.construction_method = construct(engine, config, deadline, cancel_event, budget)
        stats.construction_score = engine.score
        logger.info(
            "Construction (%s) for %s: %s",
            stats.construction_method, problem.timetable_id, engine.score,
        )

        best = engine.snapshot()
        best_score = engine.score
        if on_best is not None:
            on_best(best_score)

        if problem.lessons:
            best, best_score = self._anneal(
                engine, rng, deadline, cancel_event, on_best, stats, best, best_score,
            )
        else:
            stats.termination = TerminationReason.PERFECT_SCORE

        engine.restore(best)
        engine.write_back(best)
        stats.elapsed_seconds = time.monotonic() - started

        logger.info(
            "Solve of %s finished: %s after %d iterations (%s, %.2fs)",
            problem.timetable_id, best_score, stats.iterations,
            stats.termination.value, stats.elapsed_seconds,
        )
        return TimetableSolution(
            problem=problem,
            score=best_score,
            breakdown=engine.breakdown(),
            stats=stats,
        )

    # -------------------------------------------------------------------------
    # Simulated Annealing
    # -------------------------------------------------------------------------

    def _anneal(
        self,
        engine: ConstraintEngine,
        rng: random.Random,
        deadline: float,
        cancel_event: Optional[threading.Event],
        on_best: Optional[Callable[[HardSoftScore], None]],
        stats: SolveStats,
        best: list,
        best_score: HardSoftScore,
    ) -> tuple[list, HardSoftScore]:
        """Improve the engine's assignment until a stop condition is met."""
        config = self.config
        state = engine.state
        num_lessons = len(engine.slots)
        suitable_rooms = [
            [r for r in range(state.num_rooms) if state.room_capacity[r] >= info.class_size]
            or list(range(state.num_rooms))
            for info in state.lessons
        ]

        temperature = config.initial_temperature
        since_improvement = 0
        since_reheat = 0
        conflicted = engine.conflicted_lessons() if engine.hard else []

        while True:
            if best_score == ZERO_SCORE:
                stats.termination = TerminationReason.PERFECT_SCORE
                break
            if cancel_event is not None and cancel_event.is_set():
                stats.termination = TerminationReason.CANCELLED
                break
            if time.monotonic() >= deadline:
                stats.termination = TerminationReason.TIME_LIMIT
                break
            if since_improvement >= config.max_iterations_without_improvement:
                stats.termination = TerminationReason.NO_IMPROVEMENT
                break

            stats.iterations += 1
            if engine.hard and stats.iterations % 200 == 0:
                conflicted = engine.conflicted_lessons()

            if engine.hard and conflicted and rng.random() < config.conflict_focus:
                first = rng.choice(conflicted)
            else:
                first = rng.randrange(num_lessons)

            if num_lessons > 1 and rng.random() < config.swap_probability:
                second = rng.randrange(num_lessons)
                if second == first or engine.slots[first] == engine.slots[second]:
                    since_improvement += 1
                    continue
                delta = engine.swap(first, second)
                undo = (engine.swap, (first, second))
            else:
                slot = (
                    rng.randrange(state.num_days),
                    rng.randrange(state.num_periods),
                    rng.choice(suitable_rooms[first]),
                )
                previous = engine.slots[first]
                if slot == previous:
                    since_improvement += 1
                    continue
                delta = engine.move(first, slot)
                undo = (engine.move, (first, previous))

            if self._accept(delta, temperature, rng):
                stats.accepted_moves += 1
            else:
                undo[0](*undo[1])

            score = engine.score
            if score < best_score:
                best = engine.snapshot()
                best_score = score
                stats.improvements += 1
                since_improvement = 0
                since_reheat = 0
                logger.debug("New best %s at iteration %d", best_score, stats.iterations)
                if on_best is not None:
                    on_best(best_score)
                if engine.hard:
                    conflicted = engine.conflicted_lessons()
            else:
                since_improvement += 1
                since_reheat += 1

            temperature = max(config.min_temperature, temperature * config.cooling_rate)
            if since_reheat >= config.reheat_after:
                temperature = config.initial_temperature
                since_reheat = 0

        return best, best_score

    @staticmethod
    def _accept(delta: HardSoftScore, temperature: float, rng: random.Random) -> bool:
        if delta.hard > 0:
            return False
        if delta.hard < 0 or delta.soft <= 0:
            return True
        return rng.random() < math.exp(-delta.soft / temperature)
