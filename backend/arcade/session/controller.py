"""
Session controller: the round state machine.

    intro -> playing -> results -> (intro for the next round | complete)

The controller owns the session state, the hosted mini-game and every timer
of the session. All timers are cancelled on every transition, and every
entry point re-checks the phase synchronously before doing anything, so a
late completion, a stale timer or a double click cannot advance the session
twice. Persistence runs in background tasks that survive the controller's
teardown; the UI never waits on the network.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import time
from typing import TYPE_CHECKING

import structlog

from arcade.logic.aggregate import score_rounds, session_total
from arcade.logic.contract import DEFAULT_REPORT, RoundContext, sanitize_report
from arcade.logic.enums import ExitReason, Grade, RoundEndReason, SaveStatus, SessionPhase
from arcade.logic.exceptions import PlaylistLoadError, ScoringError
from arcade.logic.grading import round_half_up
from arcade.logic.selector import PlaylistSelector, RandomSelector
from arcade.logic.timer import RoundClock
from arcade.logic.types import GameScore, RoundRecord, ScoreReport
from arcade.session.models import SessionState, SessionTimings
from arcade.session.telemetry import SessionTelemetry
from arcade.session.timer_manager import TimerPurpose, TimerRegistry
from shared.logging import bind_session_context

if TYPE_CHECKING:
    import random
    from collections.abc import Awaitable, Callable, Coroutine
    from typing import Any

    from arcade.logic.catalog import GameCatalog
    from arcade.logic.contract import MiniGame, MiniGameFactory
    from arcade.logic.playlist import Playlist
    from arcade.logic.scoring import ScoringRegistry
    from arcade.logic.selector import ResolvedRound
    from arcade.logic.types import SessionScore
    from arcade.session.gateway import PersistenceGateway
    from arcade.session.models import SessionLedger

logger = structlog.get_logger()

DEFAULT_TOTAL_ROUNDS = 5


class SessionController:
    def __init__(
        self,
        gateway: PersistenceGateway,
        scoring: ScoringRegistry,
        game_factory: MiniGameFactory,
        *,
        playlist_id: int | None = None,
        total_rounds: int = DEFAULT_TOTAL_ROUNDS,
        timings: SessionTimings | None = None,
        rng: random.Random | None = None,
        telemetry: SessionTelemetry | None = None,
        on_exit: Callable[[ExitReason], Awaitable[None] | None] | None = None,
    ) -> None:
        if total_rounds < 1:
            raise ValueError("total_rounds must be at least 1")
        self._gateway = gateway
        self._catalog: GameCatalog = gateway.catalog
        self._scoring = scoring
        self._game_factory = game_factory
        self._timings = timings or SessionTimings()
        self._telemetry = telemetry or SessionTelemetry()
        self._on_exit = on_exit
        self._ledger: SessionLedger = gateway.begin_session()
        self._state = SessionState(
            session_id=self._ledger.local_session_id,
            total_rounds=total_rounds,
            playlist_id=playlist_id,
        )
        self._timers = TimerRegistry()
        self._random = RandomSelector(self._catalog, rng)
        self._playlist_selector: PlaylistSelector | None = None
        self._playlist_ready = asyncio.Event()
        self._load_task: asyncio.Task[None] | None = None
        self._load_error: PlaylistLoadError | None = None
        self._game: MiniGame | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._started_at: float | None = None
        self._remote_session_requested = False
        self._exit_reason: ExitReason | None = None
        if playlist_id is None:
            self._playlist_ready.set()

    # -- read-only views ------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def ledger(self) -> SessionLedger:
        return self._ledger

    @property
    def save_status(self) -> SaveStatus:
        return self._ledger.status

    @property
    def playlist(self) -> Playlist | None:
        return self._playlist_selector.playlist if self._playlist_selector else None

    @property
    def playlist_ready(self) -> bool:
        return self._playlist_ready.is_set()

    @property
    def load_error(self) -> PlaylistLoadError | None:
        return self._load_error

    @property
    def exit_reason(self) -> ExitReason | None:
        return self._exit_reason

    @property
    def exited(self) -> bool:
        return self._state.exited

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    @property
    def time_remaining(self) -> float | None:
        clock = self._timers.clock
        return clock.time_remaining if clock else None

    @property
    def session_score(self) -> SessionScore:
        return score_rounds(self._state.round_scores)

    @property
    def live_total(self) -> float:
        """Running session total of the recorded rounds, for the in-round header."""
        return session_total(r.score for r in self._state.round_scores)

    @property
    def live_report(self) -> ScoreReport | None:
        """Latest score the hosted mini-game reported this round."""
        return self._state.live_report

    def playtime_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return int(round_half_up(time.monotonic() - self._started_at))

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> bool:
        """Enter the intro of the first round. In playlist mode the playlist loads in the background."""
        if self._started_at is not None or self._state.exited:
            return False
        self._started_at = time.monotonic()
        bind_session_context(self.session_id, self._state.current_round)
        logger.info(
            "session started",
            playlist_id=self._state.playlist_id,
            total_rounds=self._state.total_rounds,
            authenticated=self._gateway.auth.is_authenticated,
        )
        if self._state.playlist_id is not None:
            self._load_task = asyncio.create_task(self._load_playlist(self._state.playlist_id))
        self._enter_intro()
        return True

    async def _load_playlist(self, playlist_id: int) -> None:
        try:
            playlist = await self._gateway.load_playlist(playlist_id)
            selector = PlaylistSelector(playlist, self._catalog)
        except PlaylistLoadError as exc:
            self._handle_load_error(exc)
            return
        except Exception:
            logger.exception("unexpected error while loading playlist", playlist_id=playlist_id)
            self._handle_load_error(PlaylistLoadError(playlist_id, "unexpected error while loading playlist"))
            return
        if self._state.exited:
            return
        self._playlist_selector = selector
        self._state.total_rounds = playlist.total_rounds
        if not self._gateway.auth.is_authenticated:
            self._resume_guest_progress(playlist_id)
        self._playlist_ready.set()
        if self._state.phase is SessionPhase.INTRO:
            self._select_current()

    def _handle_load_error(self, exc: PlaylistLoadError) -> None:
        self._load_error = exc
        if self._state.exited:
            return
        logger.warning(
            "playlist failed to load, returning to menu",
            playlist_id=exc.playlist_id,
            round_number=exc.round_number,
            reason=exc.reason,
        )
        self._timers.cancel_all()
        self._timers.schedule(
            TimerPurpose.EXIT_DELAY,
            self._timings.load_error_exit_seconds,
            functools.partial(self.exit, ExitReason.LOAD_ERROR),
        )

    def _resume_guest_progress(self, playlist_id: int) -> None:
        resumed = self._gateway.resume_rounds(playlist_id)
        if not resumed:
            return
        if len(resumed) >= self._state.total_rounds:
            logger.info("guest already finished this playlist, starting over", playlist_id=playlist_id)
            return
        self._state.round_scores = list(resumed)
        self._state.played_game_ids = [r.game_id for r in resumed]
        self._state.current_round = len(resumed) + 1
        bind_session_context(self.session_id, self._state.current_round)
        logger.info("resuming guest playlist progress", playlist_id=playlist_id, round_number=self._state.current_round)

    def _select_current(self) -> ResolvedRound:
        """Resolve the game for the current round, once per round."""
        state = self._state
        if state.current is not None and state.current.round_number == state.current_round:
            return state.current
        if self._playlist_selector is not None:
            resolved = self._playlist_selector.select(state.current_round)
        else:
            resolved = self._random.select(state.current_round, state.played_game_ids)
        state.current = resolved
        state.played_game_ids.append(resolved.game.slug)
        logger.info("game selected", game=resolved.game.slug, round_number=resolved.round_number)
        return resolved

    def _enter_intro(self) -> None:
        self._timers.cancel_all()
        self._state.phase = SessionPhase.INTRO
        self._state.last_score = None
        bind_session_context(self.session_id, self._state.current_round)
        if self._playlist_ready.is_set():
            self._select_current()
        self._timers.schedule(TimerPurpose.AUTO_ADVANCE, self._timings.intro_delay_seconds, self._intro_elapsed)

    async def _intro_elapsed(self) -> None:
        if not self._playlist_ready.is_set():
            logger.debug("intro elapsed, waiting for playlist")
            await self._playlist_ready.wait()
        await self.start_round()

    async def start_round(self) -> bool:
        """Leave the intro and host the round's mini-game behind a fresh round clock."""
        state = self._state
        if state.exited or state.phase is not SessionPhase.INTRO:
            logger.debug("start_round ignored", phase=state.phase)
            return False
        if not self._playlist_ready.is_set():
            logger.info("round start deferred until the playlist has loaded")
            return False

        resolved = self._select_current()
        self._timers.cancel_all()
        state.phase = SessionPhase.PLAYING
        state.round_finished = False
        state.live_report = None

        game = self._game_factory(resolved)
        self._game = game
        clock = RoundClock(
            resolved.game.duration_seconds,
            tick_seconds=self._timings.tick_seconds,
            is_paused=lambda: game.pause_clock,
        )
        context = RoundContext(
            resolved,
            time_remaining=lambda: clock.time_remaining,
            on_score=functools.partial(self._score_from_game, resolved.round_number),
            on_complete=functools.partial(self._complete_from_game, resolved.round_number),
        )
        self._timers.start_clock(clock, self._handle_round_timeout)
        self._telemetry.user_id = self._current_user_id()
        self._telemetry.game_started(resolved.game, resolved.round_number)

        if not self._remote_session_requested and self._gateway.auth.is_authenticated:
            self._remote_session_requested = True
            self._spawn(self._gateway.ensure_remote_session(self._ledger), "create remote session")

        logger.info(
            "round started",
            game=resolved.game.slug,
            duration_seconds=resolved.game.duration_seconds,
            puzzle_id=resolved.puzzle_id,
            puzzle_ids=resolved.puzzle_ids,
        )
        try:
            game.start(context)
        except Exception:
            logger.exception("mini-game failed to start, skipping round", game=resolved.game.slug)
            await self._finish_round(DEFAULT_REPORT, 0.0, RoundEndReason.SKIPPED)
        return True

    # -- round completion -----------------------------------------------------

    def update_score(self, raw_score: float, max_score: float) -> bool:
        """Record a live score from the hosted game."""
        if self._state.phase is not SessionPhase.PLAYING or self._state.round_finished:
            return False
        self._state.live_report = ScoreReport(raw_score, max_score)
        return True

    def _score_from_game(self, round_number: int, report: ScoreReport) -> None:
        if round_number == self._state.current_round:
            self.update_score(report.raw_score, report.max_score)

    async def _complete_from_game(self, round_number: int, report: ScoreReport, time_remaining: float | None) -> None:
        if round_number != self._state.current_round:
            logger.warning("ignoring completion from a previous round", round_number=round_number)
            return
        await self._finish_round(report, time_remaining, RoundEndReason.COMPLETED)

    async def complete_round(self, raw_score: float, max_score: float, time_remaining: float | None = None) -> bool:
        """Natural completion of the current round (win or loss)."""
        return await self._finish_round(ScoreReport(raw_score, max_score), time_remaining, RoundEndReason.COMPLETED)

    async def skip_round(self) -> bool:
        """Skip counts as an immediate completion with nothing scored."""
        return await self._finish_round(ScoreReport(0, 100), 0.0, RoundEndReason.SKIPPED)

    async def _handle_round_timeout(self) -> None:
        game = self._game
        report = DEFAULT_REPORT
        if game is not None:
            try:
                report = game.get_score()
            except Exception:
                logger.exception("mini-game failed to report a score at timeout")
        await self._finish_round(report, 0.0, RoundEndReason.TIMEOUT)

    async def _finish_round(self, report: ScoreReport, time_remaining: float | None, reason: RoundEndReason) -> bool:
        state = self._state
        if state.exited or state.phase is not SessionPhase.PLAYING or state.round_finished:
            logger.debug("round completion ignored", phase=state.phase, reason=reason)
            return False
        state.round_finished = True

        if time_remaining is None:
            time_remaining = self.time_remaining or 0.0
        self._timers.cancel_all()
        self._stop_game()

        resolved = state.current
        if resolved is None:
            logger.error("round finished without a selected game, leaving session")
            await self.exit(ExitReason.NO_ROUNDS)
            return True

        report = sanitize_report(report, resolved.game.slug)
        score = self._normalize(resolved, report, time_remaining)
        puzzle_id = resolved.puzzle_id
        if puzzle_id is None and resolved.puzzle_ids:
            puzzle_id = resolved.puzzle_ids[0]
        state.round_scores.append(
            RoundRecord(
                round_number=state.current_round,
                game_id=resolved.game.slug,
                game_name=resolved.game.name,
                raw_score=report.raw_score,
                max_score=report.max_score,
                puzzle_id=puzzle_id,
                score=score,
            )
        )
        state.last_score = score
        logger.info(
            "round finished",
            reason=reason,
            game=resolved.game.slug,
            final_score=score.final_score,
            grade=score.grade,
            session_total=self.live_total,
        )
        self._telemetry.round_completed(resolved.game, state.current_round, score, time_remaining)
        if state.playlist_id is not None and not self._gateway.auth.is_authenticated:
            self._gateway.record_draft_progress(state.playlist_id, state.round_scores)
        self._enter_results()
        return True

    def _normalize(self, resolved: ResolvedRound, report: ScoreReport, time_remaining: float) -> GameScore:
        try:
            return self._scoring.normalize(resolved.game, report, time_remaining)
        except ScoringError:
            logger.exception("could not score round, recording zero", game=resolved.game.slug)
            return GameScore(
                game_id=resolved.game.slug,
                game_name=resolved.game.name,
                raw_score=report.raw_score,
                normalized_score=0,
                grade=Grade.F,
            )

    def _enter_results(self) -> None:
        self._timers.cancel_all()
        if not self._state.round_scores:
            logger.error("results reached with no recorded rounds, leaving session")
            self._spawn(self.exit(ExitReason.NO_ROUNDS), "exit without rounds")
            return
        self._state.phase = SessionPhase.RESULTS

    async def continue_(self) -> bool:
        """Confirm the results screen: next round, or complete after the last one."""
        state = self._state
        if state.exited or state.phase is not SessionPhase.RESULTS:
            logger.debug("continue ignored", phase=state.phase)
            return False
        if state.current_round >= state.total_rounds:
            await self._enter_complete()
            return True
        state.current_round += 1
        state.current = None
        self._enter_intro()
        return True

    async def _enter_complete(self) -> None:
        state = self._state
        self._timers.cancel_all()
        if not state.round_scores:
            logger.error("session completed with no recorded rounds, leaving session")
            await self.exit(ExitReason.NO_ROUNDS)
            return
        state.phase = SessionPhase.COMPLETE
        if state.finalized:
            return
        state.finalized = True

        playtime = self.playtime_seconds()
        snapshot = self._gateway.snapshot(
            self._ledger,
            state.round_scores,
            playtime,
            playlist_id=state.playlist_id,
        )
        logger.info(
            "session complete",
            total_score=snapshot.session.total_score,
            percentage=snapshot.session.percentage,
            grade=snapshot.grade,
            playtime_seconds=playtime,
        )
        self._telemetry.session_completed(snapshot.session, playtime, len(state.round_scores))
        if state.playlist_id is not None and not self._gateway.auth.is_authenticated:
            self._gateway.advance_to_next_playlist()
        self._spawn(self._gateway.finalize(self._ledger, snapshot), "finalize session")
        self._timers.schedule(
            TimerPurpose.AUTH_PROMPT,
            self._timings.auth_prompt_delay_seconds,
            self._offer_auth_prompt,
        )

    async def _offer_auth_prompt(self) -> None:
        pending = self._gateway.pending
        if self._gateway.auth.is_authenticated or pending is None:
            return
        if pending.local_session_id != self.session_id or self._ledger.saved:
            return
        self._state.auth_prompt = True
        logger.info("offering sign-in to save the session")

    # -- leaving --------------------------------------------------------------

    async def quit_and_save(self) -> bool:
        """Leave mid-session, committing the rounds finished so far."""
        state = self._state
        if state.exited or state.phase is SessionPhase.COMPLETE:
            logger.debug("quit ignored", phase=state.phase)
            return False
        self._timers.cancel_all()
        self._stop_game()
        playtime = self.playtime_seconds()
        game_name = state.current.game.name if state.current else None
        self._telemetry.session_abandoned(game_name, state.current_round, self.live_total, playtime)

        if state.round_scores and not state.finalized:
            state.finalized = True
            snapshot = self._gateway.snapshot(
                self._ledger,
                state.round_scores,
                playtime,
                partial=True,
                playlist_id=state.playlist_id,
            )
            logger.info(
                "quitting with partial progress",
                rounds=len(state.round_scores),
                percentage=snapshot.session.percentage,
            )
            self._spawn(self._gateway.finalize(self._ledger, snapshot), "save partial session")
        await self.exit(ExitReason.QUIT)
        return True

    async def exit(self, reason: ExitReason = ExitReason.MENU) -> None:
        """Leave for the menu. Pending timers are cancelled; persistence keeps running."""
        if self._state.exited:
            return
        self._shutdown()
        self._exit_reason = reason
        logger.info("session exited", reason=reason, phase=self._state.phase)
        if self._on_exit is None:
            return
        try:
            result = self._on_exit(reason)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("exit callback failed")

    def teardown(self) -> None:
        """Unmount without notifying anyone. Safe to call more than once."""
        if not self._state.exited:
            self._shutdown()
            logger.debug("session torn down", phase=self._state.phase)

    def _shutdown(self) -> None:
        self._state.exited = True
        self._timers.cancel_all()
        self._stop_game()
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()

    def _stop_game(self) -> None:
        game, self._game = self._game, None
        if game is None:
            return
        try:
            game.stop()
        except Exception:
            logger.exception("mini-game failed to stop")

    # -- background work ------------------------------------------------------

    def _current_user_id(self) -> str | None:
        user = self._gateway.auth.user
        return user.user_id if user else None

    def _spawn(self, coro: Coroutine[Any, Any, object], what: str) -> None:
        task = asyncio.create_task(self._run_background(coro, what))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _run_background(coro: Coroutine[Any, Any, object], what: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("background task failed", task=what)

    async def wait_for_background(self) -> None:
        """Wait for persistence work started by this session."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
