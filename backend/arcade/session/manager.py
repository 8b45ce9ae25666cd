"""
Registry of devices and live sessions for the HTTP surface.

A device owns its auth state, its draft storage and its persistence gateway;
those outlive individual sessions. A device has at most one live session:
starting a new one tears the previous one down.

A session that exits stops counting toward capacity but stays readable in a
bounded list of finished sessions. Idle devices (no live session, nothing
waiting for sign-in) are evicted oldest first once there are too many.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from arcade.session.auth import AuthState
from arcade.session.client_game import ClientMiniGame
from arcade.session.controller import DEFAULT_TOTAL_ROUNDS, SessionController
from arcade.session.gateway import DEFAULT_PLAYLIST_COUNT, PersistenceGateway
from arcade.session.models import SessionTimings

if TYPE_CHECKING:
    from collections.abc import Callable

    from arcade.logic.catalog import GameCatalog
    from arcade.logic.enums import ExitReason
    from arcade.logic.scoring import ScoringRegistry
    from arcade.logic.selector import ResolvedRound
    from shared.dal.remote_store import RemoteStore
    from shared.storage import DraftStorage

logger = structlog.get_logger()

DEFAULT_MAX_SESSIONS = 1000
DEFAULT_MAX_DEVICES = 10000
DEFAULT_FINISHED_KEPT = 256


class CapacityError(Exception):
    """No room for another live session."""


@dataclass
class Device:
    device_id: str
    auth: AuthState
    gateway: PersistenceGateway
    session_id: str | None = None


@dataclass
class SessionEntry:
    device_id: str
    controller: SessionController
    games: list[ClientMiniGame] = field(default_factory=list)

    @property
    def current_game(self) -> ClientMiniGame | None:
        return self.games[-1] if self.games else None


class ArcadeManager:
    def __init__(
        self,
        catalog: GameCatalog,
        scoring: ScoringRegistry,
        store: RemoteStore,
        draft_factory: Callable[[str], DraftStorage],
        *,
        timings: SessionTimings | None = None,
        default_rounds: int = DEFAULT_TOTAL_ROUNDS,
        playlist_count: int = DEFAULT_PLAYLIST_COUNT,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        max_devices: int = DEFAULT_MAX_DEVICES,
        finished_kept: int = DEFAULT_FINISHED_KEPT,
    ) -> None:
        self._catalog = catalog
        self._scoring = scoring
        self._store = store
        self._draft_factory = draft_factory
        self._timings = timings or SessionTimings()
        self._default_rounds = default_rounds
        self._playlist_count = playlist_count
        self._max_sessions = max_sessions
        self._max_devices = max_devices
        self._finished_kept = finished_kept
        # both keep insertion order: oldest first
        self._devices: dict[str, Device] = {}
        self._finished: dict[str, SessionEntry] = {}
        self._sessions: dict[str, SessionEntry] = {}

    @property
    def catalog(self) -> GameCatalog:
        return self._catalog

    @property
    def store(self) -> RemoteStore:
        return self._store

    @property
    def session_count(self) -> int:
        """Live sessions, the ones counted against capacity."""
        return len(self._sessions)

    @property
    def finished_count(self) -> int:
        return len(self._finished)

    @property
    def device_count(self) -> int:
        return len(self._devices)

    def device(self, device_id: str) -> Device:
        """Return the device, creating its auth state, drafts and gateway on first use."""
        device = self._devices.pop(device_id, None)
        created = device is None
        if device is None:
            auth = AuthState()
            gateway = PersistenceGateway(
                self._store,
                self._draft_factory(device_id),
                auth,
                self._catalog,
                playlist_count=self._playlist_count,
            )
            gateway.init()
            device = Device(device_id=device_id, auth=auth, gateway=gateway)
            logger.info("device registered", device_id=device_id)
        # most recently used last
        self._devices[device_id] = device
        if created:
            self._evict_idle_devices(keep=device_id)
        return device

    def get_device(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def get_session(self, session_id: str) -> SessionEntry | None:
        return self._sessions.get(session_id) or self._finished.get(session_id)

    async def create_session(
        self,
        device_id: str,
        playlist_id: int | None = None,
        total_rounds: int | None = None,
    ) -> SessionEntry:
        """Start a new session on a device, discarding the device's previous one."""
        device = self.device(device_id)
        if device.session_id is not None:
            self.remove_session(device.session_id)
        if len(self._sessions) >= self._max_sessions:
            raise CapacityError("Server at capacity")

        games: list[ClientMiniGame] = []

        def host_game(resolved: ResolvedRound) -> ClientMiniGame:
            game = ClientMiniGame(resolved)
            games.append(game)
            return game

        def session_exited(reason: ExitReason) -> None:
            self._session_exited(controller.session_id, reason)

        controller = SessionController(
            device.gateway,
            self._scoring,
            host_game,
            playlist_id=playlist_id,
            total_rounds=total_rounds or self._default_rounds,
            timings=self._timings,
            on_exit=session_exited,
        )
        entry = SessionEntry(device_id=device_id, controller=controller, games=games)
        self._sessions[controller.session_id] = entry
        device.session_id = controller.session_id
        await controller.start()
        return entry

    def _session_exited(self, session_id: str, reason: ExitReason) -> None:
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return
        self._finished[session_id] = entry
        while len(self._finished) > self._finished_kept:
            oldest = next(iter(self._finished))
            self._discard(oldest, self._finished.pop(oldest))
        logger.debug("session moved to finished", session_id=session_id, reason=reason, live=len(self._sessions))

    def remove_session(self, session_id: str) -> bool:
        entry = self._sessions.pop(session_id, None) or self._finished.pop(session_id, None)
        if entry is None:
            return False
        self._discard(session_id, entry)
        return True

    def _discard(self, session_id: str, entry: SessionEntry) -> None:
        entry.controller.teardown()
        device = self._devices.get(entry.device_id)
        if device is not None and device.session_id == session_id:
            device.session_id = None

    def _evict_idle_devices(self, keep: str) -> None:
        excess = len(self._devices) - self._max_devices
        for device_id, device in list(self._devices.items()):
            if excess <= 0:
                break
            if device_id == keep or device.session_id in self._sessions or device.gateway.pending is not None:
                continue
            del self._devices[device_id]
            if device.session_id is not None:
                self.remove_session(device.session_id)
            device.gateway.teardown()
            excess -= 1
            logger.info("idle device evicted", device_id=device_id)

    async def shutdown(self) -> None:
        """Tear down every session and let in-flight saves finish."""
        entries = [*self._sessions.values(), *self._finished.values()]
        for session_id in [*self._sessions, *self._finished]:
            self.remove_session(session_id)
        await asyncio.gather(*(e.controller.wait_for_background() for e in entries), return_exceptions=True)
        for device in self._devices.values():
            device.gateway.teardown()
        logger.info("arcade manager shut down", sessions=len(entries))
