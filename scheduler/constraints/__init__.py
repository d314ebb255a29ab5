"""
Constraint rules and the incremental scoring engine.

Hard rules are listed in ``hard.py`` and soft rules in ``soft.py``; the
engine applies the fixed list of both to every move.
"""

from .config import ConstraintWeights, ConstraintLimits
from .score import HardSoftScore, Rule, HARD, SOFT, ZERO_SCORE
from .state import ScheduleState, LessonInfo, Slot, count_gaps, split_runs, run_excess
from .hard import HARD_RULES, CONFLICT_RULES
from .soft import soft_rules
from .engine import ConstraintEngine, calculate_score

__all__ = [
    # Configuration
    "ConstraintWeights",
    "ConstraintLimits",
    # Score
    "HardSoftScore",
    "ZERO_SCORE",
    "Rule",
    "HARD",
    "SOFT",
    # State
    "ScheduleState",
    "LessonInfo",
    "Slot",
    "count_gaps",
    "split_runs",
    "run_excess",
    # Rules
    "HARD_RULES",
    "CONFLICT_RULES",
    "soft_rules",
    # Engine
    "ConstraintEngine",
    "calculate_score",
]
