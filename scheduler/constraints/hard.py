"""
Hard constraints.

A hard violation makes the timetable unusable as published:
- A teacher, room or class in two places at once
- A class larger than its room
- A lesson with no slot at all

Conflict rules count each clashing pair once: a lesson joining ``n`` others
in the same (day, period) adds ``n`` pairs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .score import HARD, Rule

if TYPE_CHECKING:
    from .state import ScheduleState, Slot


def teacher_conflict(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    day, period, _ = slot
    return state.teacher_slot[(state.lessons[lesson_idx].teacher_id, day, period)]


def room_conflict(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    day, period, room = slot
    return state.room_slot[(room, day, period)]


def class_conflict(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    day, period, _ = slot
    return state.class_slot[(state.lessons[lesson_idx].class_id, day, period)]


def room_capacity(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    if slot is None:
        return 0
    return 1 if state.room_capacity[slot[2]] < state.lessons[lesson_idx].class_size else 0


def unassigned(state: ScheduleState, lesson_idx: int, slot: Optional[Slot]) -> int:
    return 1 if slot is None else 0


HARD_RULES: tuple[Rule, ...] = (
    Rule("teacher_conflict", HARD, teacher_conflict),
    Rule("room_conflict", HARD, room_conflict),
    Rule("class_conflict", HARD, class_conflict),
    Rule("room_capacity", HARD, room_capacity),
    Rule("unassigned", HARD, unassigned),
)

CONFLICT_RULES = ("teacher_conflict", "room_conflict", "class_conflict", "room_capacity")
