"""
Persistence gateway: anonymous drafts, authenticated commits, reconciliation.

One gateway serves one device and outlives the controllers that use it, so
a snapshot taken when a guest finishes (or quits) a session is still there
when that guest signs in later. Every commit attempt, whether it comes from
a session completing or from a sign-in event, goes through ``_commit``,
which claims the session's ledger before its first await. Whichever writer
claims first is the only one that reaches the remote store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from arcade.logic.aggregate import score_rounds
from arcade.logic.enums import SaveStatus
from arcade.logic.exceptions import PlaylistLoadError
from arcade.logic.grading import round_half_up
from arcade.logic.playlist import PROCEDURAL_GAME_NAME, Playlist, PlaylistRound, build_playlist
from arcade.session.models import AnonymousSessionRecord, PendingSessionData, SessionLedger
from shared.dal.models import RoundResultRow, SessionSummary
from shared.dal.remote_store import RemoteStoreError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from arcade.logic.catalog import GameCatalog
    from arcade.logic.types import RoundRecord
    from arcade.session.auth import AuthState, AuthUser
    from shared.dal.remote_store import RemoteStore
    from shared.storage import DraftStorage

logger = structlog.get_logger()

ANONYMOUS_SESSION_KEY = "rowdy_anonymous_session"
DEFAULT_PLAYLIST_COUNT = 10


class PersistenceGateway:
    def __init__(
        self,
        store: RemoteStore,
        drafts: DraftStorage,
        auth: AuthState,
        catalog: GameCatalog,
        playlist_count: int = DEFAULT_PLAYLIST_COUNT,
    ) -> None:
        if playlist_count < 1:
            raise ValueError("playlist_count must be at least 1")
        self._store = store
        self._drafts = drafts
        self._auth = auth
        self._catalog = catalog
        self._playlist_count = playlist_count
        self._pending: PendingSessionData | None = None
        self._pending_ledger: SessionLedger | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def init(self) -> None:
        """Start listening for sign-in events. Idempotent."""
        if self._unsubscribe is None:
            self._unsubscribe = self._auth.subscribe(self._on_auth_change)

    def teardown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def auth(self) -> AuthState:
        return self._auth

    @property
    def catalog(self) -> GameCatalog:
        return self._catalog

    @property
    def pending(self) -> PendingSessionData | None:
        return self._pending

    # -- ledgers --------------------------------------------------------------

    def begin_session(self) -> SessionLedger:
        """Open the persistence ledger for a new controller session.

        The gateway keeps no reference to it unless the session ends up held
        as the pending snapshot.
        """
        return SessionLedger()

    async def _remote_session_for(self, ledger: SessionLedger, user_id: str) -> str:
        """Return the ledger's remote session for ``user_id``, creating it if needed.

        A session created for a different user is replaced. Serialized per
        ledger so the round-1 creation and a commit never create two records.
        """
        async with ledger.remote_lock:
            if ledger.remote_session_id is not None and ledger.user_id == user_id:
                return ledger.remote_session_id
            if ledger.remote_session_id is not None:
                logger.info("remote session belongs to another user, creating a new one", user_id=user_id)
            session_id = await self._store.create_session(user_id)
            ledger.remote_session_id = session_id
            ledger.user_id = user_id
            logger.info("remote session created", remote_session_id=session_id, user_id=user_id)
            return session_id

    async def ensure_remote_session(self, ledger: SessionLedger) -> str | None:
        """Create the remote session for the signed-in user, if any. Failures are logged, never raised."""
        user = self._auth.user
        if user is None:
            return None
        try:
            return await self._remote_session_for(ledger, user.user_id)
        except Exception:
            logger.exception("failed to create remote session", user_id=user.user_id)
            return None

    # -- snapshots ------------------------------------------------------------

    def build_results(self, rounds: Sequence[RoundRecord]) -> tuple[RoundResultRow, ...]:
        """Per-round persistence rows, numbered in play order."""
        return tuple(
            RoundResultRow(
                game_id=self._catalog.game_id_for(r.game_id),
                puzzle_id=r.puzzle_id,
                round_number=r.round_number,
                raw_score=r.raw_score,
                max_score=r.max_score,
                normalized_score=int(round_half_up(r.score.normalized_score)),
                grade=r.score.grade.value,
            )
            for r in rounds
        )

    def snapshot(
        self,
        ledger: SessionLedger,
        rounds: Sequence[RoundRecord],
        playtime_seconds: int,
        *,
        partial: bool = False,
        playlist_id: int | None = None,
    ) -> PendingSessionData:
        session = score_rounds(rounds)
        return PendingSessionData(
            local_session_id=ledger.local_session_id,
            session=session,
            grade=session.grade,
            playtime_seconds=playtime_seconds,
            results=self.build_results(rounds),
            partial=partial,
            playlist_id=playlist_id,
        )

    # -- commit paths ---------------------------------------------------------

    async def finalize(self, ledger: SessionLedger, snapshot: PendingSessionData) -> SaveStatus:
        """Commit directly when signed in, otherwise hold the snapshot until sign-in."""
        user = self._auth.user
        if user is None:
            self._hold_pending(ledger, snapshot)
            return ledger.status
        if not await self._commit(ledger, snapshot, user.user_id) and ledger.status is SaveStatus.FAILED:
            # kept for the next reconciliation attempt
            self._hold_pending(ledger, snapshot, SaveStatus.FAILED)
        return ledger.status

    def _hold_pending(
        self,
        ledger: SessionLedger,
        snapshot: PendingSessionData,
        status: SaveStatus = SaveStatus.AWAITING_AUTH,
    ) -> None:
        if not ledger.claimable:
            logger.info("session already persisted, not holding snapshot", status=ledger.status)
            return
        previous = self._pending
        if previous is not None and previous.local_session_id != snapshot.local_session_id:
            logger.info(
                "replacing unsaved pending session",
                replaced_session_id=previous.local_session_id,
                rounds=len(previous.results),
            )
            old_ledger = self._pending_ledger
            if old_ledger is not None and old_ledger.status is SaveStatus.AWAITING_AUTH:
                old_ledger.status = SaveStatus.UNSAVED
        self._pending = snapshot
        self._pending_ledger = ledger
        ledger.status = status
        logger.info(
            "session held for a later commit",
            status=status,
            rounds=len(snapshot.results),
            partial=snapshot.partial,
        )

    def _clear_pending(self) -> None:
        self._pending = None
        self._pending_ledger = None

    async def _commit(self, ledger: SessionLedger, snapshot: PendingSessionData, user_id: str) -> bool:
        """Persist one session. At most one call per ledger ever succeeds."""
        if not ledger.claimable:
            logger.info("commit skipped, session already claimed", status=ledger.status)
            return False
        # claimed before the first await
        ledger.status = SaveStatus.SAVING
        try:
            session_id = await self._remote_session_for(ledger, user_id)
            summary = SessionSummary(
                total_score=snapshot.session.total_score,
                max_possible=snapshot.session.max_possible,
                percentage=snapshot.session.percentage,
                grade=snapshot.grade.value,
                rounds_played=len(snapshot.results),
                playtime_seconds=snapshot.playtime_seconds,
            )
            await self._store.complete_session(session_id, summary)
            await self._store.save_round_results(session_id, user_id, list(snapshot.results))
        except Exception:
            ledger.status = SaveStatus.FAILED
            logger.exception("failed to persist session", user_id=user_id)
            return False
        ledger.status = SaveStatus.SAVED
        logger.info(
            "session persisted",
            remote_session_id=session_id,
            rounds=len(snapshot.results),
            percentage=snapshot.session.percentage,
            partial=snapshot.partial,
        )
        return True

    async def reconcile(self, user: AuthUser | None = None) -> bool:
        """Promote the pending snapshot into a remote commit for ``user``.

        The snapshot is cleared only when the commit succeeds, so a failed
        attempt can be retried by the next auth event.
        """
        user = user or self._auth.user
        pending = self._pending
        if user is None or pending is None:
            return False
        ledger = self._pending_ledger
        if ledger is None or ledger.local_session_id != pending.local_session_id:
            ledger = SessionLedger(local_session_id=pending.local_session_id)
            self._pending_ledger = ledger
        committed = await self._commit(ledger, pending, user.user_id)
        if committed and self._pending is pending:
            self._clear_pending()
        return committed

    async def _on_auth_change(self, previous: AuthUser | None, current: AuthUser | None) -> None:
        if current is None:
            return
        if self._pending is not None:
            logger.info("signed in with a pending session, reconciling", user_id=current.user_id)
            await self.reconcile(current)

    def decline_save(self) -> bool:
        """Drop the pending snapshot. Returns False when there was none."""
        pending = self._pending
        if pending is None:
            return False
        ledger = self._pending_ledger
        self._clear_pending()
        if ledger is not None and ledger.status is SaveStatus.AWAITING_AUTH:
            ledger.status = SaveStatus.UNSAVED
        logger.info("player declined to save session", rounds=len(pending.results))
        return True

    # -- anonymous drafts -----------------------------------------------------

    def load_draft(self) -> AnonymousSessionRecord | None:
        raw = self._drafts.get_item(ANONYMOUS_SESSION_KEY)
        if raw is None:
            return None
        try:
            return AnonymousSessionRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("discarding unreadable anonymous draft", exc_info=True)
            return None

    def _save_draft(self, record: AnonymousSessionRecord) -> AnonymousSessionRecord:
        self._drafts.set_item(ANONYMOUS_SESSION_KEY, record.model_dump_json(by_alias=True))
        return record

    def current_playlist_id(self) -> int:
        draft = self.load_draft()
        return draft.current_playlist_id if draft else 1

    def record_draft_progress(self, playlist_id: int, rounds: Sequence[RoundRecord]) -> AnonymousSessionRecord:
        """Store how far a guest got through ``playlist_id``."""
        return self._save_draft(
            AnonymousSessionRecord(
                current_playlist_id=playlist_id,
                completed_rounds=len(rounds),
                round_scores=tuple(rounds),
            )
        )

    def resume_rounds(self, playlist_id: int) -> tuple[RoundRecord, ...]:
        """Rounds a guest already completed in ``playlist_id``, or () to start fresh."""
        draft = self.load_draft()
        if draft is None or draft.current_playlist_id != playlist_id:
            return ()
        rounds = draft.round_scores[: draft.completed_rounds]
        if len(rounds) != draft.completed_rounds:
            logger.warning("anonymous draft is inconsistent, starting playlist over", playlist_id=playlist_id)
            return ()
        return rounds

    def advance_to_next_playlist(self) -> int:
        """Move the guest on to the next playlist, wrapping after the last one."""
        current = self.current_playlist_id()
        next_id = 1 if current >= self._playlist_count else current + 1
        self._save_draft(AnonymousSessionRecord(current_playlist_id=next_id))
        logger.info("advanced to next playlist", previous_playlist_id=current, playlist_id=next_id)
        return next_id

    def reset_draft(self) -> None:
        self._save_draft(AnonymousSessionRecord())

    def clear_draft(self) -> None:
        self._drafts.remove_item(ANONYMOUS_SESSION_KEY)

    # -- playlists ------------------------------------------------------------

    async def load_playlist(self, playlist_id: int) -> Playlist:
        """Fetch and validate a playlist. Raises PlaylistLoadError on any failure."""
        try:
            record = await self._store.load_playlist(playlist_id)
        except RemoteStoreError as exc:
            raise PlaylistLoadError(playlist_id, str(exc) or "playlist fetch failed") from exc

        game_ids = {r.game_id for r in record.rounds if r.game_id is not None}
        names: dict[int, str] = {}
        if game_ids:
            try:
                names = await self._store.load_game_names(game_ids)
            except RemoteStoreError:
                logger.warning("could not load game names for playlist", playlist_id=playlist_id, exc_info=True)

        rounds = [
            PlaylistRound(
                round_number=r.round_number,
                game_id=r.game_id,
                puzzle_id=r.puzzle_id,
                ranking_puzzle_id=r.ranking_puzzle_id,
                metadata=r.metadata,
                game_name=names.get(r.game_id, PROCEDURAL_GAME_NAME) if r.game_id is not None else PROCEDURAL_GAME_NAME,
            )
            for r in record.rounds
        ]
        playlist = build_playlist(playlist_id, rounds, name=record.name, description=record.description)
        logger.info("playlist loaded", playlist_id=playlist_id, rounds=playlist.total_rounds)
        return playlist
