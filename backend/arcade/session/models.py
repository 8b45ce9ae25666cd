from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from arcade.logic.enums import Grade, SaveStatus, SessionPhase
from arcade.logic.timer import DEFAULT_TICK_SECONDS
from arcade.logic.types import CamelModel, GameScore, RoundRecord, SessionScore  # noqa: TC001
from shared.dal.models import RoundResultRow  # noqa: TC001

if TYPE_CHECKING:
    from arcade.logic.selector import ResolvedRound
    from arcade.logic.types import ScoreReport
    from arcade.server.settings import ArcadeSettings


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionTimings(BaseModel):
    """Fixed delays driving the controller's automatic transitions."""

    intro_delay_seconds: float = 4
    auth_prompt_delay_seconds: float = 7
    load_error_exit_seconds: float = 3
    tick_seconds: float = DEFAULT_TICK_SECONDS

    @classmethod
    def from_settings(cls, settings: ArcadeSettings) -> SessionTimings:
        """Build SessionTimings from ArcadeSettings."""
        return cls(
            intro_delay_seconds=settings.intro_delay_seconds,
            auth_prompt_delay_seconds=settings.auth_prompt_delay_seconds,
            load_error_exit_seconds=settings.load_error_exit_seconds,
            tick_seconds=settings.tick_seconds,
        )


@dataclass
class SessionLedger:
    """Persistence bookkeeping for one controller session.

    ``status`` is the single guard every commit attempt checks. It moves to
    SAVING synchronously before any remote call, so concurrent writers for the
    same session see the claim and back off.
    """

    local_session_id: str = field(default_factory=new_session_id)
    remote_session_id: str | None = None
    user_id: str | None = None  # owner of remote_session_id
    status: SaveStatus = SaveStatus.UNSAVED
    # serializes remote session creation for this ledger
    remote_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def saved(self) -> bool:
        return self.status is SaveStatus.SAVED

    @property
    def claimable(self) -> bool:
        return self.status not in (SaveStatus.SAVING, SaveStatus.SAVED)


class PendingSessionData(BaseModel):
    """Snapshot of a session finished (or quit) while anonymous, held until login or decline."""

    model_config = ConfigDict(frozen=True)

    local_session_id: str
    session: SessionScore
    grade: Grade
    playtime_seconds: int = 0
    results: tuple[RoundResultRow, ...]
    partial: bool = False
    playlist_id: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AnonymousSessionRecord(CamelModel):
    """Guest progress through curated playlists, stored once per device."""

    current_playlist_id: int = 1
    completed_rounds: int = Field(default=0, ge=0)
    round_scores: tuple[RoundRecord, ...] = ()
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass
class SessionState:
    """Mutable state of one session. Only the controller writes to it."""

    session_id: str
    total_rounds: int
    playlist_id: int | None = None
    current_round: int = 1
    phase: SessionPhase = SessionPhase.INTRO
    round_scores: list[RoundRecord] = field(default_factory=list)
    played_game_ids: list[str] = field(default_factory=list)
    current: ResolvedRound | None = None
    live_report: ScoreReport | None = None
    last_score: GameScore | None = None
    round_finished: bool = False  # completion already handled for current_round
    finalized: bool = False
    exited: bool = False
    auth_prompt: bool = False

    @property
    def is_playlist(self) -> bool:
        return self.playlist_id is not None
