import asyncio

import pytest

from arcade.logic.timer import RoundClock


class TestRoundClock:
    async def test_expiry_fires_once_when_time_runs_out(self):
        clock = RoundClock(0.05, tick_seconds=0.01)
        calls = 0

        async def on_expire():
            nonlocal calls
            calls += 1

        task = clock.start(on_expire)
        await asyncio.wait_for(task, timeout=1.0)

        assert calls == 1
        assert clock.expired
        assert clock.time_remaining == 0
        assert not clock.running

    async def test_time_remaining_counts_down_in_ticks(self):
        clock = RoundClock(10, tick_seconds=0.01)
        clock.start(_noop)
        await asyncio.sleep(0.055)
        clock.cancel()

        assert 9.5 <= clock.time_remaining < 10

    async def test_paused_ticks_consume_no_time(self):
        paused = True
        clock = RoundClock(1, tick_seconds=0.01, is_paused=lambda: paused)
        clock.start(_noop)
        await asyncio.sleep(0.05)

        assert clock.time_remaining == 1

        paused = False
        await asyncio.sleep(0.05)
        clock.cancel()
        assert clock.time_remaining < 1

    async def test_cancel_prevents_expiry_and_keeps_remaining_time(self):
        clock = RoundClock(0.03, tick_seconds=0.01)
        fired = asyncio.Event()

        async def on_expire():
            fired.set()

        clock.start(on_expire)
        clock.cancel()
        await asyncio.sleep(0.06)

        assert not fired.is_set()
        assert clock.time_remaining == 0.03
        assert not clock.expired

    async def test_failing_callback_is_logged_not_raised(self, caplog):
        clock = RoundClock(0.01, tick_seconds=0.01)

        async def on_expire():
            raise RuntimeError("boom")

        await asyncio.wait_for(clock.start(on_expire), timeout=1.0)

        assert "round clock expiry callback failed" in caplog.text

    def test_rejects_non_positive_tick(self):
        with pytest.raises(ValueError, match="tick_seconds"):
            RoundClock(10, tick_seconds=0)


async def _noop() -> None:
    pass
