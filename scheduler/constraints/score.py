"""Hard/soft score used to compare timetable assignments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True, order=True)
class HardSoftScore:
    """
    Penalty totals, compared lexicographically; lower is better.

    Any reduction in ``hard`` outweighs any amount of ``soft``. A score with
    ``hard == 0`` satisfies every hard constraint.

    Example:
        >>> HardSoftScore(0, 120) < HardSoftScore(1, 0)
        True
    """
    hard: int = 0
    soft: int = 0

    @property
    def is_feasible(self) -> bool:
        return self.hard == 0

    def __add__(self, other: "HardSoftScore") -> "HardSoftScore":
        return HardSoftScore(self.hard + other.hard, self.soft + other.soft)

    def __sub__(self, other: "HardSoftScore") -> "HardSoftScore":
        return HardSoftScore(self.hard - other.hard, self.soft - other.soft)

    def to_dict(self) -> dict[str, int]:
        return {"hard": self.hard, "soft": self.soft}

    def __str__(self) -> str:
        return f"{self.hard}hard/{self.soft}soft"


ZERO_SCORE = HardSoftScore(0, 0)


# =============================================================================
# Rule Definition
# =============================================================================

HARD = "hard"
SOFT = "soft"


@dataclass(frozen=True)
class Rule:
    """
    A named constraint and its marginal-impact function.

    ``impact(state, lesson_idx, slot)`` returns how many violations the
    lesson adds by occupying ``slot`` given everything else in ``state``.
    Soft violations are multiplied by ``weight``.
    """
    name: str
    level: str
    impact: Callable[..., int]
    weight: int = 1

    @property
    def is_hard(self) -> bool:
        return self.level == HARD
