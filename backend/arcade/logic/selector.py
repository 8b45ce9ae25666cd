"""
Round selection: which mini-game plays next.

Playlist mode resolves every round of a curated playlist up front, so a
playlist that references an unknown game fails at load time instead of
silently playing something other than what was configured. Random mode draws
from the games not yet played in the current cycle of the catalog.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from arcade.logic.exceptions import PlaylistLoadError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from arcade.logic.catalog import GameCatalog, GameConfig
    from arcade.logic.playlist import Playlist, PlaylistRound

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResolvedRound:
    """A round bound to a concrete game, with puzzle identity passed through unchanged."""

    round_number: int
    game: GameConfig
    puzzle_id: int | None = None
    puzzle_ids: tuple[int, ...] | None = None
    ranking_puzzle_id: int | None = None


def _resolve_slug(playlist_id: int, descriptor: PlaylistRound, catalog: GameCatalog) -> str:
    """Game-id table first, then the procedural slug embedded in metadata."""
    if descriptor.game_id is not None:
        game = catalog.by_game_id(descriptor.game_id)
        if game is not None:
            return game.slug
        logger.warning(
            "playlist round game_id has no catalog entry",
            playlist_id=playlist_id,
            round_number=descriptor.round_number,
            game_id=descriptor.game_id,
        )
    slug = descriptor.game_slug
    if slug is None:
        reason = (
            f"game_id {descriptor.game_id} has no catalog entry and no procedural game_slug"
            if descriptor.game_id is not None
            else "round has neither a game_id nor a procedural game_slug"
        )
        raise PlaylistLoadError(playlist_id, reason, descriptor.round_number)
    return slug


def resolve_round(playlist: Playlist, round_number: int, catalog: GameCatalog) -> ResolvedRound:
    descriptor = playlist.round(round_number)
    slug = _resolve_slug(playlist.playlist_id, descriptor, catalog)
    game = catalog.get(slug)
    if game is None:
        raise PlaylistLoadError(playlist.playlist_id, f"unknown game slug '{slug}'", round_number)

    puzzle_ids = descriptor.puzzle_ids
    return ResolvedRound(
        round_number=round_number,
        game=game,
        puzzle_id=None if puzzle_ids is not None else descriptor.puzzle_id,
        puzzle_ids=puzzle_ids,
        ranking_puzzle_id=descriptor.ranking_puzzle_id,
    )


class PlaylistSelector:
    """Serve the pre-resolved rounds of one playlist."""

    def __init__(self, playlist: Playlist, catalog: GameCatalog) -> None:
        self._playlist = playlist
        self._rounds = {n: resolve_round(playlist, n, catalog) for n in range(1, playlist.total_rounds + 1)}

    @property
    def playlist(self) -> Playlist:
        return self._playlist

    @property
    def total_rounds(self) -> int:
        return self._playlist.total_rounds

    def select(self, round_number: int) -> ResolvedRound:
        resolved = self._rounds.get(round_number)
        if resolved is None:
            raise PlaylistLoadError(self._playlist.playlist_id, "round not found", round_number)
        return resolved


class RandomSelector:
    """Uniform draw without repetition until the whole catalog has been played.

    The exclusion set is the tail of the played list belonging to the current
    pass over the catalog, so once every game has appeared the full catalog
    becomes eligible again and the eligible set is never empty.
    """

    def __init__(self, catalog: GameCatalog, rng: random.Random | None = None) -> None:
        self._catalog = catalog
        self._rng = rng or random.Random()  # noqa: S311

    def eligible(self, played_game_ids: Sequence[str]) -> list[GameConfig]:
        games = self._catalog.games()
        in_current_cycle = len(played_game_ids) % len(games)
        recent = set(played_game_ids[len(played_game_ids) - in_current_cycle :]) if in_current_cycle else set()
        return [g for g in games if g.slug not in recent] or games

    def select(self, round_number: int, played_game_ids: Sequence[str]) -> ResolvedRound:
        game = self._rng.choice(self.eligible(played_game_ids))
        return ResolvedRound(round_number=round_number, game=game)
