"""Typed exceptions for the arcade core.

The session core recovers from every failure locally; these types exist so
each layer can catch exactly what it knows how to recover from (the
Controller catches PlaylistLoadError and exits to the menu, the gateway
catches store failures and keeps the pending snapshot).
"""


class ArcadeError(Exception):
    """Base class for arcade domain errors."""


class ScoringError(ArcadeError):
    """A score could not be normalized (unknown game, no rule registered)."""


class CatalogError(ArcadeError):
    """The game catalog file is missing, malformed or inconsistent."""


class PlaylistLoadError(ArcadeError):
    """A playlist could not be loaded or one of its rounds cannot be resolved.

    Attributes:
        playlist_id: The playlist that failed to load.
        round_number: The offending round, or None when the playlist as a whole is unusable.
    """

    def __init__(self, playlist_id: int, reason: str, round_number: int | None = None) -> None:
        self.playlist_id = playlist_id
        self.round_number = round_number
        self.reason = reason
        where = f"playlist {playlist_id}" if round_number is None else f"playlist {playlist_id} round {round_number}"
        super().__init__(f"{where}: {reason}")


class InvalidTransitionError(ArcadeError):
    """A session operation was requested in a phase that does not allow it."""

    def __init__(self, operation: str, phase: str) -> None:
        self.operation = operation
        self.phase = phase
        super().__init__(f"cannot {operation} while session is in phase '{phase}'")
