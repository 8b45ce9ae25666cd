"""
Score normalization for mini-games.

Every mini-game reports a raw score in its own units. A scoring rule maps that
report onto a common 0-100 scale; the rule's family decides the formula and
its tuned constants come from the game catalog. The time bonus is applied
afterwards, independent of the family, and re-grades the bonus-inclusive total.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Annotated, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from arcade.logic.exceptions import ScoringError
from arcade.logic.grading import grade_for, round_half_up
from arcade.logic.types import GameScore

if TYPE_CHECKING:
    from arcade.logic.catalog import GameCatalog, GameConfig
    from arcade.logic.types import ScoreReport

logger = structlog.get_logger()

MAX_NORMALIZED_SCORE = 100.0
# an accuracy round below full marks never displays as 100
IMPERFECT_ACCURACY_CAP = 99.99


def _clamp(value: float) -> float:
    return min(MAX_NORMALIZED_SCORE, max(0.0, value))


class _Rule(BaseModel, ABC):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @abstractmethod
    def normalize(self, report: ScoreReport, time_remaining: float, duration: float) -> tuple[float, str]:
        """Return (normalized score in [0, 100], human-readable breakdown)."""


class AccuracyRule(_Rule):
    """Pick-N-correct-of-M games: the raw score counts correct answers out of max_score."""

    family: Literal["accuracy"] = "accuracy"

    def normalize(self, report: ScoreReport, time_remaining: float, duration: float) -> tuple[float, str]:
        total = report.max_score
        if total <= 0:
            return 0.0, "No questions answered"
        correct = min(max(report.raw_score, 0.0), total)
        value = _clamp(round_half_up(100 * correct / total, 2))
        if correct < total:
            value = min(value, IMPERFECT_ACCURACY_CAP)
        return value, f"{correct:g}/{total:g} correct ({value:g}% accuracy)"


class ProgressionRule(_Rule):
    """Reach-level-L games, soft-capped at max_level."""

    family: Literal["progression"] = "progression"
    max_level: int = Field(gt=0)

    def normalize(self, report: ScoreReport, time_remaining: float, duration: float) -> tuple[float, str]:
        level = max(report.raw_score, 0.0)
        value = _clamp(round_half_up(100 * level / self.max_level, 2))
        return value, f"Reached level {level:g} of {self.max_level}"


class PointsRule(_Rule):
    """Arcade point accumulation against a tuned denominator."""

    family: Literal["points"] = "points"
    denominator: float = Field(gt=0)

    def normalize(self, report: ScoreReport, time_remaining: float, duration: float) -> tuple[float, str]:
        points = max(report.raw_score, 0.0)
        value = _clamp(round_half_up(100 * points / self.denominator, 2))
        return value, f"Score: {round_half_up(points):g}"


class DiminishingRule(_Rule):
    """Unbounded scores on a soft asymptote: 100 * (2/pi) * atan(S / k)."""

    family: Literal["diminishing"] = "diminishing"
    k: float = Field(gt=0)

    def normalize(self, report: ScoreReport, time_remaining: float, duration: float) -> tuple[float, str]:
        points = max(report.raw_score, 0.0)
        value = _clamp(round_half_up(100 * (2 / math.pi) * math.atan(points / self.k)))
        return value, f"Score: {round_half_up(points):g}"


class DeadlineRule(_Rule):
    """Completion-with-deadline games.

    Completing earns ``base`` plus a share of ``bonus_range`` proportional to
    the time left. Failing earns partial credit proportional to the time
    spent, capped at ``partial_cap``. A round counts as completed when the raw
    score reaches ``completion_threshold`` of the reported maximum.
    """

    family: Literal["deadline"] = "deadline"
    base: float = Field(default=50, ge=0)
    bonus_range: float = Field(default=50, ge=0)
    partial_cap: float = Field(default=40, ge=0)
    completion_threshold: float = Field(default=1.0, gt=0, le=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> DeadlineRule:
        if self.base + self.bonus_range > MAX_NORMALIZED_SCORE:
            raise ValueError("base + bonus_range must not exceed 100")
        if self.partial_cap > self.base:
            raise ValueError("partial_cap must not exceed base")
        return self

    def normalize(self, report: ScoreReport, time_remaining: float, duration: float) -> tuple[float, str]:
        completed = report.max_score > 0 and report.raw_score >= self.completion_threshold * report.max_score
        remaining = min(max(time_remaining, 0.0), duration) if duration > 0 else 0.0
        left_ratio = remaining / duration if duration > 0 else 0.0
        if completed:
            value = _clamp(round_half_up(self.base + left_ratio * self.bonus_range, 2))
            return value, f"Completed with {remaining:g}s to spare"
        value = _clamp(round_half_up((1 - left_ratio) * self.partial_cap, 2))
        return value, "Not completed"


ScoringRule = Annotated[
    AccuracyRule | ProgressionRule | PointsRule | DiminishingRule | DeadlineRule,
    Field(discriminator="family"),
]


def apply_time_bonus(score: GameScore, time_remaining: float, total_duration: float) -> GameScore:
    """Add the time bonus to a normalized score and re-grade the bonus-inclusive total.

    bonus = round(normalized * (time_remaining / total_duration) / 2). A score that
    already carries a bonus is returned unchanged, as is any score whose bonus would be 0.
    """
    if score.time_bonus is not None:
        return score
    if time_remaining <= 0 or total_duration <= 0 or score.normalized_score <= 0:
        return score
    ratio = min(time_remaining, total_duration) / total_duration
    bonus = int(round_half_up(score.normalized_score * ratio / 2))
    if bonus <= 0:
        return score
    total = round_half_up(score.normalized_score + bonus, 2)
    return score.model_copy(update={"time_bonus": bonus, "total_with_bonus": total, "grade": grade_for(total)})


class ScoringRegistry:
    """Map game slug -> scoring rule.

    Adding a game is a registration here (usually via the catalog), never an
    edit to a central dispatcher.
    """

    def __init__(self) -> None:
        self._rules: dict[str, _Rule] = {}

    @classmethod
    def from_catalog(cls, catalog: GameCatalog) -> ScoringRegistry:
        registry = cls()
        for game in catalog.games():
            registry.register(game.slug, game.scoring)
        return registry

    def register(self, slug: str, rule: _Rule) -> None:
        """Register the rule for a game. Raises ValueError if the slug already has one."""
        if slug in self._rules:
            raise ValueError(f"Scoring rule for '{slug}' already registered")
        self._rules[slug] = rule

    def rule_for(self, slug: str) -> _Rule:
        rule = self._rules.get(slug)
        if rule is None:
            raise ScoringError(f"No scoring rule registered for game '{slug}'")
        return rule

    def normalize(self, game: GameConfig, report: ScoreReport, time_remaining: float = 0) -> GameScore:
        """Produce the round's GameScore, including the time bonus when the game earns one."""
        rule = self.rule_for(game.slug)
        value, breakdown = rule.normalize(report, time_remaining, game.duration_seconds)
        score = GameScore(
            game_id=game.slug,
            game_name=game.name,
            raw_score=report.raw_score,
            normalized_score=value,
            grade=grade_for(value),
            breakdown=breakdown,
        )
        if game.time_bonus:
            score = apply_time_bonus(score, time_remaining, game.duration_seconds)
        logger.debug(
            "round normalized",
            game=game.slug,
            raw_score=report.raw_score,
            max_score=report.max_score,
            normalized_score=score.normalized_score,
            time_bonus=score.time_bonus,
            grade=score.grade,
        )
        return score
