"""Purpose-keyed timers owned by a session controller."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

import structlog

from arcade.logic.timer import RoundClock

logger = structlog.get_logger()

# Callback type: () -> Awaitable, result ignored
TimerCallback = Callable[[], Awaitable[object]]


class TimerPurpose(str, Enum):
    ROUND_COUNTDOWN = "round-countdown"
    REVEAL_DELAY = "reveal-delay"
    AUTO_ADVANCE = "auto-advance"
    AUTH_PROMPT = "auth-prompt"
    EXIT_DELAY = "exit-delay"


class TimerRegistry:
    """Hold at most one live timer per purpose.

    Scheduling a purpose cancels whatever was pending under it. The controller
    calls ``cancel_all`` on every state transition, so a timer scheduled for
    one phase can never fire into the next. A fired timer frees its purpose
    but stays owned until its callback returns: ``cancel_all`` still cancels a
    callback parked on an await, except the one making the call.
    """

    def __init__(self) -> None:
        self._tasks: dict[TimerPurpose, asyncio.Task[None]] = {}
        self._fired: set[asyncio.Task[None]] = set()
        self._clock: RoundClock | None = None

    @property
    def clock(self) -> RoundClock | None:
        """The running round countdown, if any."""
        return self._clock

    def is_active(self, purpose: TimerPurpose) -> bool:
        task = self._tasks.get(purpose)
        return task is not None and not task.done()

    def active_purposes(self) -> list[TimerPurpose]:
        return [purpose for purpose in self._tasks if self.is_active(purpose)]

    def schedule(self, purpose: TimerPurpose, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` once after ``delay`` seconds, replacing any timer of the same purpose."""
        self.cancel(purpose)
        self._tasks[purpose] = asyncio.create_task(self._run_after(purpose, delay, callback))

    def start_clock(self, clock: RoundClock, on_expire: TimerCallback) -> None:
        """Start a round countdown under ``round-countdown``."""
        self.cancel(TimerPurpose.ROUND_COUNTDOWN)
        self._clock = clock
        self._tasks[TimerPurpose.ROUND_COUNTDOWN] = clock.start(on_expire)

    def cancel(self, purpose: TimerPurpose) -> None:
        task = self._tasks.pop(purpose, None)
        if purpose is TimerPurpose.ROUND_COUNTDOWN and self._clock is not None:
            self._clock.cancel()
            self._clock = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def cancel_all(self) -> None:
        """Cancel every pending timer."""
        for purpose in list(self._tasks):
            self.cancel(purpose)
        if self._clock is not None:
            self._clock.cancel()
            self._clock = None
        current = asyncio.current_task()
        for task in list(self._fired):
            if task is not current and not task.done():
                task.cancel()

    @property
    def running_callbacks(self) -> int:
        """Fired timers whose callback has not returned yet."""
        return sum(1 for task in self._fired if not task.done())

    async def _run_after(self, purpose: TimerPurpose, delay: float, callback: TimerCallback) -> None:
        task = asyncio.current_task()
        try:
            await asyncio.sleep(delay)
            # fired: release the slot before the callback may reschedule it
            if self._tasks.get(purpose) is task:
                del self._tasks[purpose]
            if task is not None:
                self._fired.add(task)
            await callback()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("timer callback failed", purpose=purpose)
        finally:
            self._fired.discard(task)
