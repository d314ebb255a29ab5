"""
Soft constraints.

Soft violations make a timetable worse without making it unusable. Each
rule reports unweighted violation counts; ``soft_rules`` attaches the
configured weights.

Day-shape rules (gaps, consecutive runs) are not additive per lesson, so
their impact is the difference between the teacher's day with and without
the lesson. Summed over insertions in any order that still telescopes to the
day's total.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .config import ConstraintWeights
from .score import SOFT, Rule
from .state import count_gaps, run_excess

if TYPE_CHECKING:
    from .state import ScheduleState, Slot


# =============================================================================
# Teacher Day Shape
# =============================================================================

def daily_load_imbalance(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    """Lessons above the teacher's even share on a day."""
    if slot is None:
        return 0
    info = state.lessons[lesson_idx]
    return 1 if state.teacher_day_load[(info.teacher_id, slot[0])] >= info.daily_share else 0


def teacher_gap(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    day, period, _ = slot
    counts = state.day_counts(state.lessons[lesson_idx].teacher_id, day)
    before = count_gaps(counts)
    counts[period] += 1
    return count_gaps(counts) - before


def consecutive_excess(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    day, period, _ = slot
    limit = state.limits.max_consecutive_hours
    counts = state.day_counts(state.lessons[lesson_idx].teacher_id, day)
    before = run_excess(counts, state.linked, limit)
    counts[period] += 1
    return run_excess(counts, state.linked, limit) - before


# =============================================================================
# Teacher Preferences
# =============================================================================

def preference_miss(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    return state.preference_flags(state.lessons[lesson_idx].teacher_id, slot[0], slot[1])[0]


def avoidance_hit(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    return state.preference_flags(state.lessons[lesson_idx].teacher_id, slot[0], slot[1])[1]


# =============================================================================
# Rooms
# =============================================================================

def room_type_mismatch(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    required = state.lessons[lesson_idx].required_room_type
    return 1 if required is not None and state.room_type[slot[2]] != required else 0


# =============================================================================
# Class Day Shape
# =============================================================================

def class_daily_overflow(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    load = state.class_day_load[(state.lessons[lesson_idx].class_id, slot[0])]
    return 1 if load >= state.limits.max_class_lessons_per_day else 0


def same_day_repetition(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    """Pairs of lessons of the same course for a class on one day."""
    if slot is None:
        return 0
    info = state.lessons[lesson_idx]
    return state.class_course_day[(info.class_id, info.course_id, slot[0])]


SOFT_IMPACTS = (
    ("daily_load_imbalance", daily_load_imbalance),
    ("teacher_gap", teacher_gap),
    ("consecutive_excess", consecutive_excess),
    ("preference_miss", preference_miss),
    ("avoidance_hit", avoidance_hit),
    ("room_type_mismatch", room_type_mismatch),
    ("class_daily_overflow", class_daily_overflow),
    ("same_day_repetition", same_day_repetition),
)


def soft_rules(weights: Optional[ConstraintWeights] = None) -> tuple[Rule, ...]:
    """Soft rules with their weights attached."""
    weights = weights or ConstraintWeights()
    return tuple(
        Rule(name, SOFT, impact, weight=getattr(weights, name))
        for name, impact in SOFT_IMPACTS
    )
