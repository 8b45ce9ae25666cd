"""Durable per-device key/value storage for anonymous session drafts.

Each device gets its own directory; each key is one JSON document inside it.
Files are written with owner-only permissions (0o600) inside an owner-only
directory (0o700). Reads never raise: a missing or unreadable entry is
reported as absent. Writes are atomic (temp file then rename) and a failed
write is logged and reported as False rather than raised, since losing a
draft must never interrupt play.
"""

import contextlib
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()

_DRAFT_DIR_MODE = 0o700

_DRAFT_FILE_MODE = 0o600

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class DraftStorage(Protocol):
    """Protocol for a single device's durable key/value store."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> bool: ...

    def remove_item(self, key: str) -> None: ...


def _check_name(kind: str, name: str) -> str:
    if not _SAFE_NAME.match(name) or name in {".", ".."}:
        raise ValueError(f"Invalid {kind} '{name}'")
    return name


class LocalDraftStorage:
    """Stores one device's entries as ``<root>/<device_id>/<key>.json``."""

    def __init__(self, root_dir: str | Path, device_id: str) -> None:
        self._dir = (Path(root_dir) / _check_name("device id", device_id)).resolve()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{_check_name('key', key)}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError):
            logger.warning("could not read draft entry", path=str(path), exc_info=True)
            return None

    def set_item(self, key: str, value: str) -> bool:
        """Write ``value`` atomically. Returns False (and logs) when the write failed."""
        target = self._path(key)
        try:
            self._dir.mkdir(mode=_DRAFT_DIR_MODE, parents=True, exist_ok=True)
            self._write_atomic(target, value.encode("utf-8"))
        except OSError:
            logger.exception("failed to write draft entry", path=str(target))
            return False
        return True

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("failed to remove draft entry", path=str(path))

    def _write_atomic(self, target: Path, data: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(self._dir), suffix=".tmp", prefix=".draft_")
        fd_owned = True
        try:
            with os.fdopen(fd, "wb") as f:
                fd_owned = False  # os.fdopen took ownership; it will close fd
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _DRAFT_FILE_MODE)  # noqa: PTH101
            Path(tmp_path).replace(target)
        except BaseException:
            if fd_owned:
                with contextlib.suppress(OSError):
                    os.close(fd)
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise


class MemoryDraftStorage:
    """Process-local storage, used when no draft directory is configured."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> bool:
        self._items[key] = value
        return True

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)
