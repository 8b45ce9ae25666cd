import asyncio
import time
from collections.abc import Callable

from arcade.logic.catalog import GameCatalog, GameConfig
from arcade.logic.enums import Grade
from arcade.logic.scoring import AccuracyRule
from arcade.logic.types import GameScore, RoundRecord
from arcade.session.models import SessionTimings
from shared.dal.models import PlaylistRecord, PlaylistRoundRow

# Rounds only advance when a test calls start_round.
MANUAL_TIMINGS = SessionTimings(
    intro_delay_seconds=60,
    auth_prompt_delay_seconds=0.01,
    load_error_exit_seconds=0.01,
    tick_seconds=0.01,
)

# Intros advance on their own almost immediately.
FAST_TIMINGS = SessionTimings(
    intro_delay_seconds=0.01,
    auth_prompt_delay_seconds=0.01,
    load_error_exit_seconds=0.01,
    tick_seconds=0.01,
)


def make_catalog(duration_seconds: float = 30.0, *, time_bonus: bool = False) -> GameCatalog:
    """Three accuracy games with numeric ids 1-3, so raw/max maps straight to the normalized score."""
    return GameCatalog(
        GameConfig(
            slug=slug,
            game_id=game_id,
            name=slug.title(),
            duration_seconds=duration_seconds,
            scoring=AccuracyRule(),
            time_bonus=time_bonus,
        )
        for game_id, slug in enumerate(("alpha", "beta", "gamma"), start=1)
    )


def make_playlist(playlist_id: int = 1, game_ids: tuple[int | None, ...] = (1, 2, 3)) -> PlaylistRecord:
    return PlaylistRecord(
        playlist_id=playlist_id,
        name=f"Playlist {playlist_id}",
        rounds=[
            PlaylistRoundRow(round_number=n, game_id=game_id, puzzle_id=100 + n)
            for n, game_id in enumerate(game_ids, start=1)
        ],
    )


def make_record(round_number: int, slug: str = "alpha", score: float = 50) -> RoundRecord:
    return RoundRecord(
        round_number=round_number,
        game_id=slug,
        game_name=slug.title(),
        raw_score=score,
        max_score=100,
        score=GameScore(
            game_id=slug,
            game_name=slug.title(),
            raw_score=score,
            normalized_score=score,
            grade=Grade.D if score >= 40 else Grade.F,
        ),
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds, failing after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
