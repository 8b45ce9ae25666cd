"""
Score records shared by the normalizer, aggregator, controller and persistence layers.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from arcade.logic.enums import Grade  # noqa: TC001


class CamelModel(BaseModel):
    """Frozen model serialized with camelCase keys, accepting either spelling on input."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


@dataclass(frozen=True)
class ScoreReport:
    """What a mini-game reports through the score contract."""

    raw_score: float
    max_score: float


class GameScore(CamelModel):
    """One mini-game's normalized outcome for one round."""

    game_id: str
    game_name: str
    raw_score: float
    normalized_score: float = Field(ge=0, le=100)
    grade: Grade
    breakdown: str = ""
    time_bonus: int | None = None
    total_with_bonus: float | None = None

    @property
    def final_score(self) -> float:
        """Bonus-inclusive score when a time bonus was applied, else the normalized score."""
        return self.total_with_bonus if self.total_with_bonus is not None else self.normalized_score


class RoundRecord(CamelModel):
    """One completed (or skipped/timed-out) round, appended to the session's round list."""

    round_number: int = Field(ge=1)
    game_id: str
    game_name: str
    raw_score: float
    max_score: float
    puzzle_id: int | None = None
    score: GameScore = Field(alias="normalizedScore")


class SessionScore(CamelModel):
    """Aggregated totals over the recorded rounds of a session."""

    total_score: float
    max_possible: int
    percentage: float
    average_score: float
    grade: Grade
