"""Tests for ConcurrencyLimiter."""

from __future__ import annotations

import asyncio

import pytest

from botdash.governor import ConcurrencyLimiter
from tests.conftest import FakeClock


class TestAcquireRelease:
    @pytest.mark.asyncio
    async def test_acquire_under_ceiling_does_not_wait(self, clock: FakeClock) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=2, _sleep_fn=clock.sleep)
        await limiter.acquire()
        await limiter.acquire()
        assert limiter.active_count == 2
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waiter_polls_until_slot_frees(self, clock: FakeClock) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=1, poll_interval_ms=10000, _sleep_fn=clock.sleep)
        await limiter.acquire()

        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)
        assert limiter.waiting == 1
        assert limiter.active_count == 1

        limiter.release()
        await waiter

        assert limiter.active_count == 1
        assert limiter.waiting == 0
        assert clock.sleeps
        assert all(s == 10000 for s in clock.sleeps)

    def test_release_never_goes_negative(self) -> None:
        limiter = ConcurrencyLimiter()
        limiter.release()
        limiter.release()
        assert limiter.active_count == 0

    def test_release_calls_hook(self) -> None:
        calls: list[int] = []
        limiter = ConcurrencyLimiter(on_release=lambda: calls.append(1))
        limiter.release()
        assert calls == [1]

    def test_reset_keeps_held_slots(self) -> None:
        limiter = ConcurrencyLimiter()
        limiter._active_count = 3
        limiter._peak_count = 4
        limiter.reset()
        assert limiter.active_count == 3
        assert limiter.peak_count == 3

    @pytest.mark.asyncio
    async def test_reset_while_held_does_not_admit_extra(self, clock: FakeClock) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=1, _sleep_fn=clock.sleep)
        await limiter.acquire()
        limiter.reset()

        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)
        assert limiter.waiting == 1
        assert limiter.active_count == 1

        limiter.release()
        await waiter
        assert limiter.active_count == 1


class TestSlot:
    """Tests for the slot() context manager."""

    @pytest.mark.asyncio
    async def test_slot_released_on_success(self) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=1)
        async with limiter.slot():
            assert limiter.active_count == 1
        assert limiter.active_count == 0

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=1)
        with pytest.raises(RuntimeError, match="boom"):
            async with limiter.slot():
                raise RuntimeError("boom")
        assert limiter.active_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_take_slot(self, clock: FakeClock) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=1, _sleep_fn=clock.sleep)
        await limiter.acquire()

        async def blocked() -> None:
            async with limiter.slot():
                pass

        task = asyncio.create_task(blocked())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert limiter.active_count == 1
        assert limiter.waiting == 0

    @pytest.mark.asyncio
    async def test_ceiling_never_exceeded(self, clock: FakeClock) -> None:
        """Many callers: observed in-flight count never exceeds max_concurrent."""
        limiter = ConcurrencyLimiter(max_concurrent=3, poll_interval_ms=50, _sleep_fn=clock.sleep)
        observed: list[int] = []

        async def worker() -> None:
            async with limiter.slot():
                observed.append(limiter.active_count)
                await clock.sleep(100)
                observed.append(limiter.active_count)

        await asyncio.gather(*(worker() for _ in range(10)))

        assert max(observed) <= 3
        assert limiter.peak_count == 3
        assert limiter.active_count == 0
