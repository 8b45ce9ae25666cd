"""Data access layer: the remote store interface and shared persistence models."""

from shared.dal.models import PlaylistRecord, PlaylistRoundRow, RoundResultRow, SessionSummary, UserProfile
from shared.dal.remote_store import RemoteStore, RemoteStoreError

__all__ = [
    "PlaylistRecord",
    "PlaylistRoundRow",
    "RemoteStore",
    "RemoteStoreError",
    "RoundResultRow",
    "SessionSummary",
    "UserProfile",
]
