"""Structured logging for the arcade service.

Output format and level come from the environment:
- LOG_FORMAT: "json" for log shipping, "console" or unset for colored dev output.
- LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR or CRITICAL.

Two streams leave the process. Diagnostics go to stdout and, given a log
directory, to a timestamped ``.log`` file. Gameplay analytics (events on the
``arcade.analytics`` logger) stay at INFO whatever LOG_LEVEL says, and are
also written as JSON lines to ``analytics-<timestamp>.jsonl`` in the same
directory so they can be aggregated without parsing diagnostics.

Session-scoped fields (session id, round number) are carried through
structlog contextvars so every event emitted while a round is running
is tagged without threading a logger through the call stack.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
ANALYTICS_LOGGER = "arcade.analytics"

_LOG_FORMATS = ("json", "console", "")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Levels pinned regardless of LOG_LEVEL. httpx logs every request at INFO.
_PINNED_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    ANALYTICS_LOGGER: logging.INFO,
}


def _enum_values(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Render Enum members (phases, grades, save states) as their plain values."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def _running_under_pytest() -> bool:
    return "pytest" in sys.modules


def _json_output_requested() -> bool:
    value = os.environ.get("LOG_FORMAT", "").lower()
    if value not in _LOG_FORMATS:
        raise ValueError(f"Invalid LOG_FORMAT={value!r}. Must be 'json', 'console', or unset.")
    return value == "json"


def _level_from_env() -> int:
    value = os.environ.get("LOG_LEVEL", "INFO").upper()
    if value not in _LOG_LEVELS:
        raise ValueError(f"Invalid LOG_LEVEL={value!r}. Must be one of {', '.join(_LOG_LEVELS)}.")
    return getattr(logging, value)


def _handler_formatter(*, json_mode: bool, colors: bool) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def _file_handler(path: Path, *, json_mode: bool) -> logging.FileHandler:
    handler = logging.FileHandler(path)
    handler.setFormatter(_handler_formatter(json_mode=json_mode, colors=False))
    return handler


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)


def bind_session_context(session_id: str, round_number: int | None = None) -> None:
    """Tag subsequent log events with the local session id and current round."""
    structlog.contextvars.bind_contextvars(session_id=session_id)
    if round_number is not None:
        structlog.contextvars.bind_contextvars(round=round_number)


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
) -> Path | None:
    """Configure structlog, the root logger and the analytics stream.

    Returns the diagnostic log file path when file output was installed.
    Files are never created under pytest.
    """
    json_mode = _json_output_requested()
    if level is None:
        level = _level_from_env()

    # format_exc_info runs in the handler formatter so file output does not
    # render tracebacks twice.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _enum_values,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.setLevel(level)
    _reset_handlers(root)
    for name, pinned in _PINNED_LEVELS.items():
        logging.getLogger(name).setLevel(pinned)
    analytics = logging.getLogger(ANALYTICS_LOGGER)
    _reset_handlers(analytics)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(_handler_formatter(json_mode=json_mode, colors=sys.stdout.isatty()))
    root.addHandler(stdout_handler)

    if log_dir is None or _running_under_pytest():
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)
    log_path = directory / f"{stamp}.log"
    root.addHandler(_file_handler(log_path, json_mode=json_mode))
    # analytics also propagate to the root handlers above
    analytics.addHandler(_file_handler(directory / f"analytics-{stamp}.jsonl", json_mode=True))
    return log_path
