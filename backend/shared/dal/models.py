"""Persistence models exchanged with the remote store."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class RoundResultRow(BaseModel, frozen=True):
    """One persisted round of a session."""

    game_id: int  # numeric remote game id, not the slug
    puzzle_id: int | None = None  # None when the round had no puzzle
    round_number: int = Field(ge=1)
    raw_score: float
    max_score: float
    normalized_score: int  # whole points; bonus-inclusive totals live on the session
    grade: str


class SessionSummary(BaseModel, frozen=True):
    """Aggregated totals written when a session is completed."""

    total_score: float
    max_possible: int
    percentage: float
    grade: str
    rounds_played: int
    playtime_seconds: int = 0


class PlaylistRoundRow(BaseModel, frozen=True):
    """A playlist round as stored remotely. ``metadata`` is free-form JSON."""

    round_number: int
    game_id: int | None = None
    puzzle_id: int | None = None
    ranking_puzzle_id: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PlaylistRecord(BaseModel, frozen=True):
    playlist_id: int
    name: str = ""
    description: str = ""
    rounds: list[PlaylistRoundRow] = Field(default_factory=list)


class UserProfile(BaseModel, frozen=True):
    """Per-user aggregates maintained on every committed session."""

    user_id: str
    email: str = ""
    total_sessions: int = 0
    total_score: float = 0
    best_session_score: float = 0
    last_played_at: datetime | None = None
