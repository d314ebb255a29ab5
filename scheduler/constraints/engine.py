"""
Incremental constraint engine.

The engine keeps the current slot of every lesson, the occupancy indexes in
ScheduleState, and a running total per rule. A move retracts the lesson's
contribution at its old slot and inserts its contribution at the new one,
touching only the counters for the affected teacher, room, class and days.

Scoring from scratch is the same operation: insert every lesson, in order,
into an empty state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .config import ConstraintLimits, ConstraintWeights
from .hard import HARD_RULES
from .score import ZERO_SCORE, HardSoftScore, Rule
from .soft import soft_rules
from .state import ScheduleState, Slot

if TYPE_CHECKING:
    from scheduler.problem_builder import Lesson, TimetableProblem

logger = logging.getLogger(__name__)


class ConstraintEngine:
    """
    Scores an assignment of a TimetableProblem and keeps the score current
    under change and swap moves.

    Example:
        >>> engine = ConstraintEngine(problem)
        >>> engine.score
        HardSoftScore(hard=27, soft=0)
        >>> engine.move(0, (0, 0, 0))
        HardSoftScore(hard=-1, soft=0)
    """

    def __init__(
        self,
        problem: TimetableProblem,
        weights: Optional[ConstraintWeights] = None,
        limits: Optional[ConstraintLimits] = None,
    ):
        self.problem = problem
        self.catalog = problem.catalog
        self.weights = weights or ConstraintWeights()
        self.limits = limits or ConstraintLimits()
        self.state = ScheduleState(problem, self.limits)
        self.rules: tuple[Rule, ...] = HARD_RULES + soft_rules(self.weights)

        self.slots: list[Optional[Slot]] = [None] * len(problem.lessons)
        self.totals: dict[str, int] = {rule.name: 0 for rule in self.rules}
        self.hard = 0
        self.soft = 0
        self.load([self.slot_of(lesson) for lesson in problem.lessons])

    # -------------------------------------------------------------------------
    # Slot Conversion
    # -------------------------------------------------------------------------

    def slot_of(self, lesson: Lesson) -> Optional[Slot]:
        """Engine slot for a lesson's assignment, or None if it has none."""
        if not lesson.is_assigned or not 0 <= lesson.day < self.catalog.num_days:
            return None
        period = self.catalog.period_position(lesson.period)
        room = self.catalog.room_position(lesson.room_id)
        if period is None or room is None:
            return None
        return (lesson.day, period, room)

    def assignment_of(self, slot: Optional[Slot]) -> Optional[tuple[int, int, str]]:
        """(day, period index, room id) for an engine slot."""
        if slot is None:
            return None
        day, period, room = slot
        return (day, self.catalog.periods[period].index, self.catalog.rooms[room].id)

    def write_back(self, slots: Optional[list[Optional[Slot]]] = None) -> None:
        """Copy slots onto the problem's Lesson objects."""
        for lesson, slot in zip(self.problem.lessons, slots if slots is not None else self.slots):
            assignment = self.assignment_of(slot)
            if assignment is None:
                lesson.unassign()
            else:
                lesson.assign(*assignment)

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    @property
    def score(self) -> HardSoftScore:
        return HardSoftScore(self.hard, self.soft)

    def load(self, slots: list[Optional[Slot]]) -> HardSoftScore:
        """Replace the whole assignment and rescore from scratch."""
        self.state.reset()
        self.totals = {rule.name: 0 for rule in self.rules}
        self.hard = 0
        self.soft = 0
        self.slots = [None] * len(self.problem.lessons)
        for idx, slot in enumerate(slots):
            self._insert(idx, slot)
        return self.score

    def _retract(self, idx: int) -> None:
        slot = self.slots[idx]
        self.state.remove(idx, slot)
        for rule in self.rules:
            value = rule.impact(self.state, idx, slot)
            if value:
                self.totals[rule.name] -= value
                if rule.is_hard:
                    self.hard -= value
                else:
                    self.soft -= value * rule.weight

    def _insert(self, idx: int, slot: Optional[Slot]) -> None:
        for rule in self.rules:
            value = rule.impact(self.state, idx, slot)
            if value:
                self.totals[rule.name] += value
                if rule.is_hard:
                    self.hard += value
                else:
                    self.soft += value * rule.weight
        self.state.add(idx, slot)
        self.slots[idx] = slot

    # -------------------------------------------------------------------------
    # Moves
    # -------------------------------------------------------------------------

    def move(self, idx: int, slot: Optional[Slot]) -> HardSoftScore:
        """Place one lesson at ``slot``. Returns the score delta."""
        before = self.score
        self._retract(idx)
        self._insert(idx, slot)
        return self.score - before

    def swap(self, first: int, second: int) -> HardSoftScore:
        """Exchange the slots of two lessons. Returns the score delta."""
        if first == second:
            return ZERO_SCORE
        before = self.score
        first_slot, second_slot = self.slots[first], self.slots[second]
        self._retract(first)
        self._retract(second)
        self._insert(first, second_slot)
        self._insert(second, first_slot)
        return self.score - before

    def evaluate(self, idx: int, slot: Optional[Slot]) -> HardSoftScore:
        """Score delta of a move, without keeping it."""
        original = self.slots[idx]
        delta = self.move(idx, slot)
        self.move(idx, original)
        return delta

    def snapshot(self) -> list[Optional[Slot]]:
        return list(self.slots)

    def restore(self, snapshot: list[Optional[Slot]]) -> HardSoftScore:
        return self.load(snapshot)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def hard_impact(self, idx: int) -> int:
        """Hard violations the lesson is part of at its current slot."""
        slot = self.slots[idx]
        self.state.remove(idx, slot)
        impact = sum(rule.impact(self.state, idx, slot) for rule in self.rules if rule.is_hard)
        self.state.add(idx, slot)
        return impact

    def conflicted_lessons(self) -> list[int]:
        """Lessons involved in at least one hard violation."""
        return [idx for idx in range(len(self.slots)) if self.hard_impact(idx) > 0]

    def breakdown(self) -> dict[str, int]:
        """Penalty per rule; hard rules count violations, soft rules are weighted."""
        return {rule.name: self.totals[rule.name] * rule.weight for rule in self.rules}

    def violations(self) -> dict[str, int]:
        """Unweighted violation count per rule."""
        return dict(self.totals)


def calculate_score(
    problem: TimetableProblem,
    weights: Optional[ConstraintWeights] = None,
    limits: Optional[ConstraintLimits] = None,
) -> HardSoftScore:
    """Score the problem's current lesson assignment from scratch."""
    return ConstraintEngine(problem, weights, limits).score
