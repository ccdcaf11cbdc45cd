"""Shared fixtures: a fake millisecond clock for deterministic governor tests."""

from __future__ import annotations

import asyncio
import heapq

import pytest


class FakeClock:
    """Millisecond clock whose sleep() advances virtual time instead of waiting.

    Sleepers share one timeline: each sleep registers a deadline, and the
    earliest pending deadline fires first, moving the clock forward to it.
    Concurrent sleeps therefore overlap (100ms and 300ms started together end
    at 300ms), and every sleeper wakes at or after its own deadline.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = start_ms
        self.sleeps: list[int] = []
        # [deadline_ms, seq, woken]
        self._timers: list[list[int | bool]] = []
        self._seq = 0

    def time_fn(self) -> int:
        return self.now_ms

    def _fire_next(self) -> None:
        while self._timers:
            entry = heapq.heappop(self._timers)
            if entry[2]:
                # Sleeper was cancelled
                continue
            self.now_ms = max(self.now_ms, int(entry[0]))
            entry[2] = True
            return

    async def sleep(self, delay_ms: int) -> None:
        self.sleeps.append(delay_ms)
        self._seq += 1
        entry: list[int | bool] = [self.now_ms + max(0, delay_ms), self._seq, False]
        heapq.heappush(self._timers, entry)
        try:
            while True:
                # Let other tasks register their own timers first
                await asyncio.sleep(0)
                if entry[2]:
                    return
                self._fire_next()
                if entry[2]:
                    return
        finally:
            entry[2] = True

    def advance(self, delta_ms: int) -> None:
        self.now_ms += delta_ms


@pytest.fixture
def clock() -> FakeClock:
    """Fresh fake clock starting at t=0."""
    return FakeClock()
