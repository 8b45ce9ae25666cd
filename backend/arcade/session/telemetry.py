"""Gameplay analytics events, emitted as structured log records."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from arcade.logic.enums import Grade
from arcade.logic.grading import round_half_up
from shared.logging import ANALYTICS_LOGGER

if TYPE_CHECKING:
    from arcade.logic.catalog import GameConfig
    from arcade.logic.types import GameScore, SessionScore

_FAILING_GRADES = frozenset({Grade.D, Grade.F})


class SessionTelemetry:
    """Emit one analytics event per gameplay milestone.

    Events go to the ``arcade.analytics`` logger so they can be routed
    separately from operational logs. Emitting never raises.
    """

    def __init__(self, user_id: str | None = None) -> None:
        self._logger = structlog.get_logger(ANALYTICS_LOGGER)
        self.user_id = user_id

    def _emit(self, event: str, **fields: object) -> None:
        try:
            self._logger.info(event, user_id=self.user_id, **fields)
        except Exception:
            structlog.get_logger().exception("analytics event dropped", analytics_event=event)

    def game_started(self, game: GameConfig, round_number: int) -> None:
        self._emit("game_started", game_id=game.game_id, game_name=game.name, round_number=round_number)

    def round_completed(self, game: GameConfig, round_number: int, score: GameScore, time_remaining: float) -> None:
        final = round_half_up(score.final_score)
        self._emit(
            "round_completed",
            game_name=game.name,
            round_number=round_number,
            score=final,
            time_remaining=time_remaining,
            time_spent=max(game.duration_seconds - time_remaining, 0),
            success=score.grade not in _FAILING_GRADES,
            perfect=score.grade is Grade.S,
        )

    def session_completed(self, session: SessionScore, playtime_seconds: int, rounds_played: int) -> None:
        self._emit(
            "session_completed",
            total_score=round_half_up(session.total_score),
            perfect=session.percentage == 100,
            playtime_seconds=playtime_seconds,
            rounds_played=rounds_played,
        )

    def session_abandoned(
        self,
        game_name: str | None,
        round_number: int,
        session_total: float,
        playtime_seconds: int,
    ) -> None:
        self._emit(
            "session_abandoned",
            game_name=game_name or "Unknown",
            round_number=round_number,
            total_score=round_half_up(session_total),
            playtime_seconds=playtime_seconds,
        )
