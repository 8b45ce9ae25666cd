"""Session score aggregation over the recorded rounds."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from arcade.logic.grading import grade_for, round_half_up
from arcade.logic.types import SessionScore

if TYPE_CHECKING:
    from collections.abc import Iterable

    from arcade.logic.types import GameScore, RoundRecord

MAX_ROUND_SCORE = 100


def session_total(scores: Iterable[GameScore]) -> float:
    """Exact sum of bonus-inclusive round scores, independent of round order."""
    return math.fsum(score.final_score for score in scores)


def calculate_session_score(scores: Iterable[GameScore]) -> SessionScore:
    """Fold round scores into totals, percentage and the session grade.

    The session grade uses the same bands as a round grade, applied to the
    percentage. An empty list yields zeros and the lowest grade.
    """
    scores = list(scores)
    total = session_total(scores)
    max_possible = len(scores) * MAX_ROUND_SCORE
    percentage = round_half_up(100 * total / max_possible, 2) if max_possible else 0.0
    average = round_half_up(total / len(scores), 2) if scores else 0.0
    return SessionScore(
        total_score=total,
        max_possible=max_possible,
        percentage=percentage,
        average_score=average,
        grade=grade_for(percentage),
    )


def score_rounds(rounds: Iterable[RoundRecord]) -> SessionScore:
    return calculate_session_score(r.score for r in rounds)
