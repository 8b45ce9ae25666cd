from __future__ import annotations

import contextlib
import json
import re
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from arcade.logic.catalog import GameCatalog
from arcade.logic.exceptions import InvalidTransitionError
from arcade.logic.scoring import ScoringRegistry
from arcade.server.settings import ArcadeSettings
from arcade.server.types import (
    AuthRequest,
    CompleteRoundRequest,
    CreateSessionRequest,
    DeviceView,
    ScoreUpdateRequest,
    SessionView,
)
from arcade.session.auth import AuthUser
from arcade.session.manager import ArcadeManager, CapacityError
from arcade.session.models import SessionTimings
from shared.db import Database, SqliteRemoteStore
from shared.logging import setup_logging
from shared.remote import HttpRemoteStore
from shared.storage import LocalDraftStorage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request

    from arcade.session.manager import SessionEntry
    from shared.dal.remote_store import RemoteStore

logger = structlog.get_logger()

_MAX_REQUEST_BODY_SIZE = 4096

_Body = TypeVar("_Body", bound=BaseModel)

_DEVICE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class _NotFoundError(Exception):
    pass


class _BadRequestError(Exception):
    pass


def _manager(request: Request) -> ArcadeManager:
    return request.app.state.manager


async def _parse(request: Request, model: type[_Body]) -> _Body:
    try:
        raw_body = await request.body()
        if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
            raise _BadRequestError("Request body too large")
        body = json.loads(raw_body) if raw_body else {}
        if not isinstance(body, dict):
            raise _BadRequestError("Invalid request body")
        return model.model_validate(body)
    except (ValueError, TypeError, UnicodeDecodeError, ValidationError) as exc:  # fmt: skip
        raise _BadRequestError("Invalid request body") from exc


def _session(request: Request) -> SessionEntry:
    entry = _manager(request).get_session(request.path_params["session_id"])
    if entry is None:
        raise _NotFoundError("Unknown session")
    return entry


def _check_round(entry: SessionEntry, round_number: int | None, operation: str) -> None:
    state = entry.controller.state
    if round_number is not None and round_number != state.current_round:
        phase = f"{state.phase.value} (round {state.current_round})"
        raise InvalidTransitionError(f"{operation} round {round_number}", phase)


def _session_response(entry: SessionEntry, status_code: int = 200) -> JSONResponse:
    view = SessionView.from_entry(entry)
    return JSONResponse(view.model_dump(mode="json", by_alias=True), status_code=status_code)


def _device_response(request: Request, device_id: str) -> JSONResponse:
    device = _manager(request).get_device(device_id)
    if device is None:
        raise _NotFoundError("Unknown device")
    view = DeviceView.from_device(device)
    return JSONResponse(view.model_dump(mode="json", by_alias=True))


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def status(request: Request) -> JSONResponse:
    manager = _manager(request)
    settings: ArcadeSettings = request.app.state.settings
    return JSONResponse(
        {
            "status": "ok",
            "sessions": manager.session_count,
            "devices": manager.device_count,
            "max_sessions": settings.max_sessions,
            "games": len(manager.catalog),
        },
    )


async def create_session(request: Request) -> JSONResponse:
    manager = _manager(request)
    body = await _parse(request, CreateSessionRequest)
    playlist_id = body.playlist_id
    if playlist_id is None and body.use_draft_playlist:
        playlist_id = manager.device(body.device_id).gateway.current_playlist_id()
    try:
        entry = await manager.create_session(body.device_id, playlist_id=playlist_id, total_rounds=body.rounds)
    except CapacityError:
        return JSONResponse({"error": "Server at capacity"}, status_code=503)
    return _session_response(entry, status_code=201)


async def get_session(request: Request) -> JSONResponse:
    return _session_response(_session(request))


async def delete_session(request: Request) -> Response:
    if not _manager(request).remove_session(request.path_params["session_id"]):
        raise _NotFoundError("Unknown session")
    return Response(status_code=204)


async def start_round(request: Request) -> JSONResponse:
    entry = _session(request)
    if not await entry.controller.start_round():
        raise InvalidTransitionError("start round", entry.controller.phase.value)
    return _session_response(entry)


async def update_score(request: Request) -> JSONResponse:
    entry = _session(request)
    body = await _parse(request, ScoreUpdateRequest)
    _check_round(entry, body.round_number, "score")
    game = entry.current_game
    if game is None or game.stopped or not entry.controller.update_score(body.raw_score, body.max_score):
        raise InvalidTransitionError("report a score", entry.controller.phase.value)
    game.report(body.raw_score, body.max_score, pause_clock=body.pause_clock)
    return _session_response(entry)


async def complete_round(request: Request) -> JSONResponse:
    entry = _session(request)
    body = await _parse(request, CompleteRoundRequest)
    _check_round(entry, body.round_number, "complete")
    if not await entry.controller.complete_round(body.raw_score, body.max_score, body.time_remaining):
        raise InvalidTransitionError("complete a round", entry.controller.phase.value)
    return _session_response(entry)


async def skip_round(request: Request) -> JSONResponse:
    entry = _session(request)
    if not await entry.controller.skip_round():
        raise InvalidTransitionError("skip a round", entry.controller.phase.value)
    return _session_response(entry)


async def continue_session(request: Request) -> JSONResponse:
    entry = _session(request)
    if not await entry.controller.continue_():
        raise InvalidTransitionError("continue", entry.controller.phase.value)
    return _session_response(entry)


async def quit_session(request: Request) -> JSONResponse:
    entry = _session(request)
    if not await entry.controller.quit_and_save():
        raise InvalidTransitionError("quit", entry.controller.phase.value)
    return _session_response(entry)


async def get_device(request: Request) -> JSONResponse:
    return _device_response(request, request.path_params["device_id"])


async def set_device_user(request: Request) -> JSONResponse:
    device_id = request.path_params["device_id"]
    if not _DEVICE_ID.match(device_id):
        raise _BadRequestError("Invalid device id")
    body = await _parse(request, AuthRequest)
    device = _manager(request).device(device_id)
    user = AuthUser(user_id=body.user_id, email=body.email) if body.user_id else None
    await device.auth.set_user(user)
    return _device_response(request, device_id)


async def decline_save(request: Request) -> JSONResponse:
    device_id = request.path_params["device_id"]
    device = _manager(request).get_device(device_id)
    if device is None:
        raise _NotFoundError("Unknown device")
    device.gateway.decline_save()
    return _device_response(request, device_id)


async def _bad_request(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


async def _not_found(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=404)


async def _invalid_transition(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=409)


def _build_store(settings: ArcadeSettings) -> tuple[RemoteStore, Database | None]:
    if settings.store_backend == "http":
        return HttpRemoteStore(settings.remote_url, settings.remote_api_key), None
    db = Database(settings.database_path)
    db.connect()
    return SqliteRemoteStore(db), db


def create_app(
    settings: ArcadeSettings | None = None,
    manager: ArcadeManager | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = ArcadeSettings()

    # When the app creates its own ArcadeManager, it owns the store lifecycle.
    owned_store: RemoteStore | None = None
    owned_db: Database | None = None

    if manager is None:
        catalog = GameCatalog.from_yaml(settings.catalog_path)
        store, owned_db = _build_store(settings)
        owned_store = store
        draft_dir = settings.draft_dir
        manager = ArcadeManager(
            catalog,
            ScoringRegistry.from_catalog(catalog),
            store,
            lambda device_id: LocalDraftStorage(draft_dir, device_id),
            timings=SessionTimings.from_settings(settings),
            default_rounds=settings.default_rounds,
            playlist_count=settings.playlist_count,
            max_sessions=settings.max_sessions,
            max_devices=settings.max_devices,
        )

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        Route("/sessions", create_session, methods=["POST"]),
        Route("/sessions/{session_id}", get_session, methods=["GET"]),
        Route("/sessions/{session_id}", delete_session, methods=["DELETE"]),
        Route("/sessions/{session_id}/start", start_round, methods=["POST"]),
        Route("/sessions/{session_id}/score", update_score, methods=["POST"]),
        Route("/sessions/{session_id}/complete", complete_round, methods=["POST"]),
        Route("/sessions/{session_id}/skip", skip_round, methods=["POST"]),
        Route("/sessions/{session_id}/continue", continue_session, methods=["POST"]),
        Route("/sessions/{session_id}/quit", quit_session, methods=["POST"]),
        Route("/devices/{device_id}", get_device, methods=["GET"]),
        Route("/devices/{device_id}/auth", set_device_user, methods=["POST"]),
        Route("/devices/{device_id}/decline-save", decline_save, methods=["POST"]),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        if isinstance(owned_store, SqliteRemoteStore):
            for game in manager.catalog.games():
                await owned_store.upsert_game(game.game_id, game.name, game.slug)
        try:
            yield
        finally:
            await manager.shutdown()
            if isinstance(owned_store, HttpRemoteStore):
                await owned_store.close()
            if owned_db is not None:
                owned_db.close()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            _BadRequestError: _bad_request,
            _NotFoundError: _not_found,
            InvalidTransitionError: _invalid_transition,
        },
    )
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.manager = manager

    logger.info("arcade server ready", store_backend=settings.store_backend)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = ArcadeSettings()
    setup_logging(settings.log_dir)
    return create_app(settings=settings)
