"""Grade bucketing and rounding helpers shared by round and session scoring."""

import math

from arcade.logic.enums import Grade

# Lower bound of each band, evaluated top-down with >= so a score sitting on
# a boundary always earns the higher band.
GRADE_BANDS: tuple[tuple[float, Grade], ...] = (
    (95, Grade.S),
    (85, Grade.A),
    (75, Grade.B),
    (60, Grade.C),
    (40, Grade.D),
)

# Results-screen headline per session percentage, best first.
_GRADE_LABELS: tuple[tuple[float, str], ...] = (
    (90, "Absolutely Crushed It!"),
    (80, "Pretty Damn Good!"),
    (70, "Solidly Mediocre"),
    (60, "Kinda Rough"),
    (50, "That Was Ugly"),
    (40, "Spectacularly Bad!"),
)
_LOWEST_GRADE_LABEL = "What Just Happened?"


def grade_for(score: float) -> Grade:
    """Map a (possibly bonus-inclusive) score onto its grade band."""
    for lower_bound, grade in GRADE_BANDS:
        if score >= lower_bound:
            return grade
    return Grade.F


def grade_label(percentage: float) -> str:
    for lower_bound, label in _GRADE_LABELS:
        if percentage >= lower_bound:
            return label
    return _LOWEST_GRADE_LABEL


def round_half_up(value: float, digits: int = 0) -> float:
    """Round half away from zero for non-negative values (2.5 -> 3, not banker's 2)."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor
