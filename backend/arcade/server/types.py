"""Request and response bodies of the arcade HTTP API. All keys are camelCase."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from arcade.logic.enums import ExitReason, SaveStatus, SessionPhase  # noqa: TC001
from arcade.logic.grading import grade_label
from arcade.logic.types import CamelModel, GameScore, RoundRecord, SessionScore  # noqa: TC001
from arcade.session.models import AnonymousSessionRecord  # noqa: TC001

if TYPE_CHECKING:
    from arcade.logic.selector import ResolvedRound
    from arcade.session.manager import Device, SessionEntry
    from arcade.session.models import PendingSessionData

_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class CreateSessionRequest(_Request):
    device_id: str = Field(min_length=1, max_length=64, pattern=_ID_PATTERN)
    playlist_id: int | None = Field(default=None, ge=1)
    # start the device's next curated playlist from its anonymous draft
    use_draft_playlist: bool = False
    rounds: int | None = Field(default=None, ge=1, le=50)


class ScoreUpdateRequest(_Request):
    raw_score: float
    max_score: float
    pause_clock: bool = False
    # round the client believes it is playing; stale rounds are rejected
    round_number: int | None = Field(default=None, ge=1)


class CompleteRoundRequest(_Request):
    raw_score: float
    max_score: float
    time_remaining: float | None = Field(default=None, ge=0)
    round_number: int | None = Field(default=None, ge=1)


class AuthRequest(_Request):
    user_id: str | None = Field(default=None, min_length=1, max_length=100)
    email: str = Field(default="", max_length=254)


class CurrentGameView(CamelModel):
    round_number: int
    slug: str
    name: str
    instructions: str
    duration_seconds: float
    puzzle_id: int | None = None
    puzzle_ids: tuple[int, ...] | None = None
    ranking_puzzle_id: int | None = None

    @classmethod
    def from_resolved(cls, resolved: ResolvedRound) -> CurrentGameView:
        return cls(
            round_number=resolved.round_number,
            slug=resolved.game.slug,
            name=resolved.game.name,
            instructions=resolved.game.instructions,
            duration_seconds=resolved.game.duration_seconds,
            puzzle_id=resolved.puzzle_id,
            puzzle_ids=resolved.puzzle_ids,
            ranking_puzzle_id=resolved.ranking_puzzle_id,
        )


class SessionView(CamelModel):
    session_id: str
    device_id: str
    phase: SessionPhase
    current_round: int
    total_rounds: int
    playlist_id: int | None
    playlist_ready: bool
    current_game: CurrentGameView | None
    time_remaining: float | None
    live_total: float
    round_scores: list[RoundRecord]
    last_score: GameScore | None
    session_score: SessionScore
    grade_label: str
    save_status: SaveStatus
    auth_prompt: bool
    exited: bool
    exit_reason: ExitReason | None
    load_error: str | None

    @classmethod
    def from_entry(cls, entry: SessionEntry) -> SessionView:
        controller = entry.controller
        state = controller.state
        session_score = controller.session_score
        return cls(
            session_id=controller.session_id,
            device_id=entry.device_id,
            phase=state.phase,
            current_round=state.current_round,
            total_rounds=state.total_rounds,
            playlist_id=state.playlist_id,
            playlist_ready=controller.playlist_ready,
            current_game=CurrentGameView.from_resolved(state.current) if state.current else None,
            time_remaining=controller.time_remaining,
            live_total=controller.live_total,
            round_scores=list(state.round_scores),
            last_score=state.last_score,
            session_score=session_score,
            grade_label=grade_label(session_score.percentage),
            save_status=controller.save_status,
            auth_prompt=state.auth_prompt,
            exited=state.exited,
            exit_reason=controller.exit_reason,
            load_error=str(controller.load_error) if controller.load_error else None,
        )


class PendingView(CamelModel):
    session_id: str
    rounds: int
    percentage: float
    grade: str
    partial: bool
    playlist_id: int | None

    @classmethod
    def from_pending(cls, pending: PendingSessionData) -> PendingView:
        return cls(
            session_id=pending.local_session_id,
            rounds=len(pending.results),
            percentage=pending.session.percentage,
            grade=pending.grade.value,
            partial=pending.partial,
            playlist_id=pending.playlist_id,
        )


class DeviceView(CamelModel):
    device_id: str
    user_id: str | None
    authenticated: bool
    session_id: str | None
    current_playlist_id: int
    pending: PendingView | None
    draft: AnonymousSessionRecord | None

    @classmethod
    def from_device(cls, device: Device) -> DeviceView:
        gateway = device.gateway
        user = device.auth.user
        pending = gateway.pending
        return cls(
            device_id=device.device_id,
            user_id=user.user_id if user else None,
            authenticated=user is not None,
            session_id=device.session_id,
            current_playlist_id=gateway.current_playlist_id(),
            pending=PendingView.from_pending(pending) if pending else None,
            draft=gateway.load_draft(),
        )
