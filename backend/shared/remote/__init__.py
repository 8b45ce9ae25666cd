"""HTTP remote store implementation."""

from shared.remote.http_store import HttpRemoteStore

__all__ = ["HttpRemoteStore"]
