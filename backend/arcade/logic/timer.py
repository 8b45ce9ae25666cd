"""
Shared round countdown.

The clock counts a round's duration down in fixed ticks. Before consuming a
tick it asks the hosted mini-game whether the clock is paused (the game's own
reveal/feedback sub-phase); paused ticks consume no time. When the remaining
time reaches zero the expiry callback fires once and the clock stops.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

DEFAULT_TICK_SECONDS = 1.0


class RoundClock:
    """Pausable countdown for one round. Not reusable once expired or cancelled."""

    def __init__(
        self,
        duration_seconds: float,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        is_paused: Callable[[], bool] | None = None,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self._duration = max(duration_seconds, 0.0)
        self._remaining = self._duration
        self._tick = tick_seconds
        self._is_paused = is_paused or (lambda: False)
        self._task: asyncio.Task[None] | None = None
        self._expired = False

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def time_remaining(self) -> float:
        """Seconds left, never negative."""
        return self._remaining

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_expire: Callable[[], Awaitable[object]]) -> asyncio.Task[None]:
        """Start ticking. Starting a running clock restarts the tick loop from the current remaining time."""
        self.cancel()
        self._task = asyncio.create_task(self._run(on_expire))
        return self._task

    def cancel(self) -> None:
        """Stop the countdown, keeping the remaining time as it was."""
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _run(self, on_expire: Callable[[], Awaitable[object]]) -> None:
        try:
            while self._remaining > 0:
                await asyncio.sleep(self._tick)
                if self._is_paused():
                    continue
                self._remaining = max(0.0, self._remaining - self._tick)
            self._expired = True
            await on_expire()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("round clock expiry callback failed")
