"""
The score contract between the session host and a mini-game.

A mini-game reports ``(raw_score, max_score)`` whenever asked, fires its
completion exactly once per round through the RoundContext it was started
with, and may raise ``pause_clock`` to freeze the shared round countdown
during its own reveal/feedback sub-phases. Rendering and input are entirely
the mini-game's business.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

import structlog

from arcade.logic.types import ScoreReport

if TYPE_CHECKING:
    from arcade.logic.catalog import GameConfig
    from arcade.logic.selector import ResolvedRound

logger = structlog.get_logger()

# Substituted for degenerate reports so no ratio is ever taken over max_score <= 0.
DEFAULT_REPORT = ScoreReport(raw_score=0, max_score=100)


class MiniGame(Protocol):
    @property
    def pause_clock(self) -> bool: ...

    def start(self, context: RoundContext) -> None: ...

    def get_score(self) -> ScoreReport: ...

    def stop(self) -> None: ...


MiniGameFactory = Callable[["ResolvedRound"], MiniGame]


def sanitize_report(report: ScoreReport, game_slug: str = "") -> ScoreReport:
    """Replace a report with a non-finite or non-positive maximum by (0, 100)."""
    if math.isfinite(report.max_score) and report.max_score > 0 and math.isfinite(report.raw_score):
        return report
    logger.warning(
        "mini-game reported invalid score, using defaults",
        game=game_slug,
        raw_score=report.raw_score,
        max_score=report.max_score,
    )
    return DEFAULT_REPORT


class RoundContext:
    """Host handle passed to a mini-game when its round starts."""

    def __init__(
        self,
        resolved: ResolvedRound,
        time_remaining: Callable[[], float],
        on_score: Callable[[ScoreReport], None],
        on_complete: Callable[[ScoreReport, float | None], Awaitable[object]],
    ) -> None:
        self._resolved = resolved
        self._time_remaining = time_remaining
        self._on_score = on_score
        self._on_complete = on_complete

    @property
    def round_number(self) -> int:
        return self._resolved.round_number

    @property
    def game(self) -> GameConfig:
        return self._resolved.game

    @property
    def puzzle_id(self) -> int | None:
        return self._resolved.puzzle_id

    @property
    def puzzle_ids(self) -> tuple[int, ...] | None:
        return self._resolved.puzzle_ids

    @property
    def ranking_puzzle_id(self) -> int | None:
        return self._resolved.ranking_puzzle_id

    @property
    def time_remaining(self) -> float:
        return self._time_remaining()

    def report_score(self, raw_score: float, max_score: float) -> None:
        """Live score update, used for the running session total."""
        self._on_score(ScoreReport(raw_score, max_score))

    async def complete(self, raw_score: float, max_score: float, time_remaining: float | None = None) -> None:
        """Natural completion (win or loss). The host ignores repeats within a round."""
        await self._on_complete(ScoreReport(raw_score, max_score), time_remaining)
