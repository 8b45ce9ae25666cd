"""
Remote store over a PostgREST-style HTTP API.

Tables are addressed as ``<base_url>/rest/v1/<table>`` with PostgREST
filter syntax (``id=eq.<value>``). Every transport error, non-2xx response
or undecodable body surfaces as RemoteStoreError.
"""

from __future__ import annotations

from datetime import UTC, datetime
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from shared.dal.models import PlaylistRecord, PlaylistRoundRow, UserProfile
from shared.dal.remote_store import RemoteStore, RemoteStoreError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from shared.dal.models import RoundResultRow, SessionSummary

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 10.0


class HttpRemoteStore(RemoteStore):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        access_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
        token = access_token or api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.RequestError as e:
            raise RemoteStoreError(f"{method} {table} failed: {e}") from e
        if response.status_code >= HTTPStatus.BAD_REQUEST:
            raise RemoteStoreError(f"{method} {table} returned {response.status_code}: {response.text}")
        if response.status_code == HTTPStatus.NO_CONTENT or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(f"{method} {table} returned a non-JSON body") from e

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        rows = await self._request("GET", table, params=params)
        if not isinstance(rows, list):
            raise RemoteStoreError(f"expected a list of rows from {table}")
        return rows

    async def create_session(self, user_id: str) -> str:
        await self._request(
            "POST",
            "user_profiles",
            json={"id": user_id, "email": ""},
            prefer="resolution=ignore-duplicates,return=minimal",
        )
        rows = await self._request(
            "POST",
            "game_sessions",
            json={
                "user_id": user_id,
                "started_at": datetime.now(UTC).isoformat(),
                "total_score": 0,
                "percentage": 0,
                "game_count": 0,
            },
            prefer="return=representation",
        )
        try:
            return str(rows[0]["id"])
        except (TypeError, LookupError) as e:
            raise RemoteStoreError("session insert did not return an id") from e

    async def complete_session(self, session_id: str, summary: SessionSummary) -> None:
        sessions = await self._select(
            "game_sessions",
            {"id": f"eq.{session_id}", "select": "user_id,completed_at"},
        )
        if not sessions:
            raise RemoteStoreError(f"unknown session {session_id}")
        if sessions[0].get("completed_at"):
            logger.warning("session already completed, ignoring", session_id=session_id)
            return

        now = datetime.now(UTC).isoformat()
        await self._request(
            "PATCH",
            "game_sessions",
            params={"id": f"eq.{session_id}"},
            json={
                "total_score": summary.total_score,
                "max_possible_score": summary.max_possible,
                "percentage": summary.percentage,
                "session_grade": summary.grade,
                "game_count": summary.rounds_played,
                "completed_at": now,
                "metadata": {"playtime_seconds": summary.playtime_seconds},
            },
            prefer="return=minimal",
        )

        user_id = sessions[0].get("user_id")
        if not user_id:
            return
        profiles = await self._select(
            "user_profiles",
            {"id": f"eq.{user_id}", "select": "total_sessions,total_score,best_session_score"},
        )
        if not profiles:
            logger.warning("no profile to update for session owner", user_id=user_id)
            return
        profile = profiles[0]
        await self._request(
            "PATCH",
            "user_profiles",
            params={"id": f"eq.{user_id}"},
            json={
                "total_sessions": (profile.get("total_sessions") or 0) + 1,
                "total_score": (profile.get("total_score") or 0) + summary.total_score,
                "best_session_score": max(profile.get("best_session_score") or 0, summary.total_score),
                "last_played_at": now,
            },
            prefer="return=minimal",
        )

    async def save_round_results(self, session_id: str, user_id: str, rows: list[RoundResultRow]) -> None:
        if not rows:
            return
        now = datetime.now(UTC).isoformat()
        await self._request(
            "POST",
            "round_results",
            json=[{"session_id": session_id, "user_id": user_id, **r.model_dump(), "created_at": now} for r in rows],
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def load_playlist(self, playlist_id: int) -> PlaylistRecord:
        heads = await self._select("playlists", {"id": f"eq.{playlist_id}", "select": "id,name,description"})
        if not heads:
            raise RemoteStoreError(f"playlist {playlist_id} not found")
        rows = await self._select(
            "playlist_rounds",
            {
                "playlist_id": f"eq.{playlist_id}",
                "select": "round_number,game_id,puzzle_id,ranking_puzzle_id,metadata",
                "order": "round_number.asc",
            },
        )
        try:
            rounds = [PlaylistRoundRow.model_validate({**row, "metadata": row.get("metadata") or {}}) for row in rows]
        except (ValidationError, TypeError) as e:
            raise RemoteStoreError(f"malformed round in playlist {playlist_id}") from e
        head = heads[0]
        return PlaylistRecord(
            playlist_id=playlist_id,
            name=head.get("name") or "",
            description=head.get("description") or "",
            rounds=rounds,
        )

    async def load_game_names(self, game_ids: Iterable[int]) -> dict[int, str]:
        ids = sorted(set(game_ids))
        if not ids:
            return {}
        rows = await self._select("games", {"id": f"in.({','.join(str(i) for i in ids)})", "select": "id,name"})
        return {int(row["id"]): str(row["name"]) for row in rows if "id" in row and "name" in row}

    async def get_profile(self, user_id: str) -> UserProfile | None:
        rows = await self._select("user_profiles", {"id": f"eq.{user_id}"})
        if not rows:
            return None
        row = rows[0]
        try:
            return UserProfile(
                user_id=row["id"],
                email=row.get("email") or "",
                total_sessions=row.get("total_sessions") or 0,
                total_score=row.get("total_score") or 0,
                best_session_score=row.get("best_session_score") or 0,
                last_played_at=row.get("last_played_at"),
            )
        except (KeyError, ValidationError) as e:
            raise RemoteStoreError(f"malformed profile for {user_id}") from e
