"""SQLite database layer: connection management and the SQLite remote store."""

from shared.db.connection import Database
from shared.db.remote_store import SqliteRemoteStore

__all__ = [
    "Database",
    "SqliteRemoteStore",
]
