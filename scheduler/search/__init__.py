"""Construction heuristics and local search."""

from .construction import construct, greedy_placement, pick_room, seed_with_cp_sat
from .local_search import (
    LocalSearchSolver,
    SolverConfig,
    SolveStats,
    TerminationReason,
    TimetableSolution,
)

__all__ = [
    # Construction
    "construct",
    "greedy_placement",
    "pick_room",
    "seed_with_cp_sat",
    # Local search
    "LocalSearchSolver",
    "SolverConfig",
    "SolveStats",
    "TerminationReason",
    "TimetableSolution",
]
