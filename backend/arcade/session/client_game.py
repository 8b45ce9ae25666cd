"""Mini-game adapter for games that run in a remote client.

The client renders and plays the game; this adapter is what the controller
hosts in its place. It remembers the last score and pause flag the client
reported so the round clock and the timeout path can read them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from arcade.logic.contract import DEFAULT_REPORT
from arcade.logic.types import ScoreReport

if TYPE_CHECKING:
    from arcade.logic.contract import RoundContext
    from arcade.logic.selector import ResolvedRound


class ClientMiniGame:
    def __init__(self, resolved: ResolvedRound) -> None:
        self.resolved = resolved
        self.context: RoundContext | None = None
        self.stopped = False
        self._report: ScoreReport | None = None
        self._paused = False

    @property
    def pause_clock(self) -> bool:
        return self._paused

    def start(self, context: RoundContext) -> None:
        self.context = context

    def get_score(self) -> ScoreReport:
        return self._report or DEFAULT_REPORT

    def stop(self) -> None:
        self.stopped = True
        self._paused = False

    def report(self, raw_score: float, max_score: float, *, pause_clock: bool = False) -> None:
        """Record a live score update from the client."""
        if self.stopped:
            return
        self._report = ScoreReport(raw_score, max_score)
        self._paused = pause_clock
        if self.context is not None:
            self.context.report_score(raw_score, max_score)
