"""Curated playlists: externally authored, ordered round descriptors."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from arcade.logic.exceptions import PlaylistLoadError

if TYPE_CHECKING:
    from collections.abc import Iterable

PROCEDURAL_GAME_NAME = "Procedural Game"


class PlaylistRound(BaseModel):
    """One round descriptor as stored remotely."""

    model_config = ConfigDict(frozen=True)

    round_number: int
    game_id: int | None = None
    puzzle_id: int | None = None
    ranking_puzzle_id: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    game_name: str = PROCEDURAL_GAME_NAME

    @property
    def game_slug(self) -> str | None:
        """Slug embedded in metadata for procedural rounds."""
        slug = self.metadata.get("game_slug")
        return slug if isinstance(slug, str) and slug else None

    @property
    def puzzle_ids(self) -> tuple[int, ...] | None:
        """Multi-puzzle rounds list their puzzles in metadata; these take precedence over puzzle_id."""
        ids = self.metadata.get("puzzle_ids")
        if isinstance(ids, list) and all(isinstance(i, int) for i in ids):
            return tuple(ids)
        return None


class Playlist(BaseModel):
    """An immutable, validated playlist. Rounds are ordered 1..n with no gaps."""

    model_config = ConfigDict(frozen=True)

    playlist_id: int
    name: str = ""
    description: str = ""
    rounds: tuple[PlaylistRound, ...]

    @property
    def total_rounds(self) -> int:
        return len(self.rounds)

    def round(self, round_number: int) -> PlaylistRound:
        """Return the descriptor for a 1-based round number."""
        if not 1 <= round_number <= len(self.rounds):
            raise PlaylistLoadError(self.playlist_id, "round not found", round_number)
        return self.rounds[round_number - 1]


def build_playlist(
    playlist_id: int,
    rounds: Iterable[PlaylistRound],
    name: str = "",
    description: str = "",
) -> Playlist:
    """Order and validate round descriptors.

    Raises PlaylistLoadError when the playlist is empty, a round number is
    duplicated, or the numbering is not contiguous from 1. Missing rounds are
    a load error, never silently skipped.
    """
    ordered = sorted(rounds, key=lambda r: r.round_number)
    if not ordered:
        raise PlaylistLoadError(playlist_id, "no rounds found")

    seen: set[int] = set()
    for expected, descriptor in enumerate(ordered, start=1):
        if descriptor.round_number in seen:
            raise PlaylistLoadError(playlist_id, "duplicate round number", descriptor.round_number)
        seen.add(descriptor.round_number)
        if descriptor.round_number != expected:
            raise PlaylistLoadError(playlist_id, f"round {expected} is missing", expected)

    return Playlist(playlist_id=playlist_id, name=name, description=description, rounds=tuple(ordered))
