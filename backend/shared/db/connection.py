"""SQLite database connection and schema management."""

import os
import sqlite3
from pathlib import Path

import structlog

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS user_profiles (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL DEFAULT '',
    total_sessions INTEGER NOT NULL DEFAULT 0,
    total_score REAL NOT NULL DEFAULT 0,
    best_session_score REAL NOT NULL DEFAULT 0,
    last_played_at TEXT
);

CREATE TABLE IF NOT EXISTS game_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES user_profiles (id),
    started_at TEXT NOT NULL,
    completed_at TEXT,
    total_score REAL,
    max_possible_score INTEGER,
    percentage REAL,
    session_grade TEXT,
    game_count INTEGER,
    playtime_seconds INTEGER
);

CREATE INDEX IF NOT EXISTS idx_game_sessions_user
    ON game_sessions (user_id, started_at);

CREATE TABLE IF NOT EXISTS games (
    id INTEGER PRIMARY KEY,
    slug TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS round_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL REFERENCES game_sessions (id),
    user_id TEXT NOT NULL,
    game_id INTEGER NOT NULL,
    puzzle_id INTEGER,
    round_number INTEGER NOT NULL,
    raw_score REAL NOT NULL,
    max_score REAL NOT NULL,
    normalized_score INTEGER NOT NULL,
    grade TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_round_results_session_round
    ON round_results (session_id, round_number);

CREATE TABLE IF NOT EXISTS playlists (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS playlist_rounds (
    playlist_id INTEGER NOT NULL REFERENCES playlists (id),
    round_number INTEGER NOT NULL,
    game_id INTEGER,
    puzzle_id INTEGER,
    ranking_puzzle_id INTEGER,
    metadata TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (playlist_id, round_number)
);
"""


class Database:
    """SQLite database wrapper with schema management."""

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database, apply pragmas, create schema, and harden file permissions."""
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)

        self._harden_permissions()
        logger.info("database connected", path=self._path)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _harden_permissions(self) -> None:
        """Set restrictive file permissions on POSIX systems (best effort).

        Hardens the main DB file and the WAL/SHM sibling files created by WAL
        mode, since they also contain database content.
        """
        if os.name != "posix" or self._path == ":memory:":  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))
