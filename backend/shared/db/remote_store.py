"""SQLite-backed remote store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from shared.dal.models import PlaylistRecord, PlaylistRoundRow, RoundResultRow, SessionSummary, UserProfile
from shared.dal.remote_store import RemoteStore, RemoteStoreError

if TYPE_CHECKING:
    from shared.db.connection import Database

logger = structlog.get_logger()


class SqliteRemoteStore(RemoteStore):
    """SQLite implementation of RemoteStore.

    Writes are serialized through one asyncio lock. Completing a session and
    saving its rounds are both idempotent, so a commit that failed halfway can
    be retried against the same session id.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def create_session(self, user_id: str) -> str:
        session_id = uuid.uuid4().hex
        now = datetime.now(UTC).isoformat()
        async with self._lock:
            conn = self._db.connection
            try:
                conn.execute("INSERT OR IGNORE INTO user_profiles (id) VALUES (?)", (user_id,))
                conn.execute(
                    "INSERT INTO game_sessions (id, user_id, started_at) VALUES (?, ?, ?)",
                    (session_id, user_id, now),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise RemoteStoreError("failed to create session") from exc
        return session_id

    async def complete_session(self, session_id: str, summary: SessionSummary) -> None:
        """Record session totals and update the owner's profile aggregates.

        Completing an already completed session is a logged no-op, so profile
        aggregates are never counted twice.
        """
        now = datetime.now(UTC).isoformat()
        async with self._lock:
            conn = self._db.connection
            try:
                row = conn.execute(
                    "SELECT user_id, completed_at FROM game_sessions WHERE id = ?",
                    (session_id,),
                ).fetchone()
                if row is None:
                    raise RemoteStoreError(f"unknown session {session_id}")
                user_id, completed_at = row
                if completed_at is not None:
                    logger.warning("session already completed, ignoring", session_id=session_id)
                    return
                conn.execute(
                    "UPDATE game_sessions SET "
                    "completed_at = ?, total_score = ?, max_possible_score = ?, percentage = ?, "
                    "session_grade = ?, game_count = ?, playtime_seconds = ? "
                    "WHERE id = ?",
                    (
                        now,
                        summary.total_score,
                        summary.max_possible,
                        summary.percentage,
                        summary.grade,
                        summary.rounds_played,
                        summary.playtime_seconds,
                        session_id,
                    ),
                )
                conn.execute(
                    "UPDATE user_profiles SET "
                    "total_sessions = total_sessions + 1, "
                    "total_score = total_score + ?, "
                    "best_session_score = MAX(best_session_score, ?), "
                    "last_played_at = ? "
                    "WHERE id = ?",
                    (summary.total_score, summary.total_score, now, user_id),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise RemoteStoreError("failed to complete session") from exc

    async def save_round_results(self, session_id: str, user_id: str, rows: list[RoundResultRow]) -> None:
        if not rows:
            return
        async with self._lock:
            conn = self._db.connection
            try:
                conn.executemany(
                    "INSERT OR REPLACE INTO round_results "
                    "(session_id, user_id, game_id, puzzle_id, round_number, raw_score, max_score, "
                    "normalized_score, grade) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            session_id,
                            user_id,
                            r.game_id,
                            r.puzzle_id,
                            r.round_number,
                            r.raw_score,
                            r.max_score,
                            r.normalized_score,
                            r.grade,
                        )
                        for r in rows
                    ],
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise RemoteStoreError("failed to save round results") from exc

    async def load_playlist(self, playlist_id: int) -> PlaylistRecord:
        conn = self._db.connection
        try:
            head = conn.execute(
                "SELECT name, description FROM playlists WHERE id = ?",
                (playlist_id,),
            ).fetchone()
            rows = conn.execute(
                "SELECT round_number, game_id, puzzle_id, ranking_puzzle_id, metadata "
                "FROM playlist_rounds WHERE playlist_id = ? ORDER BY round_number",
                (playlist_id,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise RemoteStoreError(f"failed to load playlist {playlist_id}") from exc
        if head is None:
            raise RemoteStoreError(f"playlist {playlist_id} not found")
        try:
            rounds = [
                PlaylistRoundRow(
                    round_number=row[0],
                    game_id=row[1],
                    puzzle_id=row[2],
                    ranking_puzzle_id=row[3],
                    metadata=json.loads(row[4]) if row[4] else {},
                )
                for row in rows
            ]
        except (json.JSONDecodeError, ValueError) as exc:
            raise RemoteStoreError(f"malformed round in playlist {playlist_id}") from exc
        return PlaylistRecord(playlist_id=playlist_id, name=head[0], description=head[1], rounds=rounds)

    async def load_game_names(self, game_ids: Iterable[int]) -> dict[int, str]:
        ids = sorted(set(game_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        try:
            rows = self._db.connection.execute(
                f"SELECT id, name FROM games WHERE id IN ({placeholders})",  # noqa: S608
                ids,
            ).fetchall()
        except sqlite3.Error as exc:
            raise RemoteStoreError("failed to load game names") from exc
        return {row[0]: row[1] for row in rows}

    async def get_profile(self, user_id: str) -> UserProfile | None:
        row = self._db.connection.execute(
            "SELECT id, email, total_sessions, total_score, best_session_score, last_played_at "
            "FROM user_profiles WHERE id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return UserProfile(
            user_id=row[0],
            email=row[1],
            total_sessions=row[2],
            total_score=row[3],
            best_session_score=row[4],
            last_played_at=datetime.fromisoformat(row[5]) if row[5] else None,
        )

    async def upsert_game(self, game_id: int, name: str, slug: str = "") -> None:
        """Register a game's display name (seeded from the catalog at startup)."""
        async with self._lock:
            self._db.connection.execute(
                "INSERT INTO games (id, slug, name) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET slug = excluded.slug, name = excluded.name",
                (game_id, slug, name),
            )
            self._db.connection.commit()

    async def upsert_playlist(self, playlist: PlaylistRecord) -> None:
        """Replace a playlist and all of its rounds in one transaction."""
        async with self._lock:
            conn = self._db.connection
            try:
                conn.execute("BEGIN")
                conn.execute(
                    "INSERT INTO playlists (id, name, description) VALUES (?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET name = excluded.name, description = excluded.description",
                    (playlist.playlist_id, playlist.name, playlist.description),
                )
                conn.execute("DELETE FROM playlist_rounds WHERE playlist_id = ?", (playlist.playlist_id,))
                conn.executemany(
                    "INSERT INTO playlist_rounds "
                    "(playlist_id, round_number, game_id, puzzle_id, ranking_puzzle_id, metadata) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    [
                        (
                            playlist.playlist_id,
                            r.round_number,
                            r.game_id,
                            r.puzzle_id,
                            r.ranking_puzzle_id,
                            json.dumps(r.metadata),
                        )
                        for r in playlist.rounds
                    ],
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
