"""Abstract interface for the remote session store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from shared.dal.models import PlaylistRecord, RoundResultRow, SessionSummary, UserProfile


class RemoteStoreError(Exception):
    """A remote store call failed or returned unusable data."""


class RemoteStore(ABC):
    """Opaque remote procedure surface for sessions, round results and playlists.

    Implementations raise RemoteStoreError for any failure, so callers only
    ever have one exception type to recover from.
    """

    @abstractmethod
    async def create_session(self, user_id: str) -> str:
        """Create a session record owned by ``user_id`` and return its id.

        Also makes sure the user's profile row exists.
        """

    @abstractmethod
    async def complete_session(self, session_id: str, summary: SessionSummary) -> None:
        """Write the totals of a finished session and fold them into the owner's profile."""

    @abstractmethod
    async def save_round_results(self, session_id: str, user_id: str, rows: list[RoundResultRow]) -> None: ...

    @abstractmethod
    async def load_playlist(self, playlist_id: int) -> PlaylistRecord:
        """Return the playlist with its rounds. Raises RemoteStoreError if it does not exist."""

    @abstractmethod
    async def load_game_names(self, game_ids: Iterable[int]) -> dict[int, str]: ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None: ...
