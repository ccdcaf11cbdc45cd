"""
Concurrency limiter for in-flight requests.

Coarse admission throttle: a caller at the ceiling sleeps a fixed poll
interval and rechecks. Waiters are not strictly ordered.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from botdash.governor.rate_gate import SleepFn, asyncio_sleep_ms

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@dataclass
class ConcurrencyLimiter:
    """
    Caps the number of requests executing at once.

    Usage:
        async with limiter.slot():
            ...  # at most max_concurrent bodies run here at a time
    """

    max_concurrent: int = 5
    poll_interval_ms: int = 10000

    # Called after every release (the governor wires this to the drain loop)
    on_release: Callable[[], None] | None = field(default=None)

    _active_count: int = field(default=0, init=False)
    _peak_count: int = field(default=0, init=False)
    _waiting: int = field(default=0, init=False)

    _sleep_fn: SleepFn | None = field(default=None)

    @property
    def active_count(self) -> int:
        return self._active_count

    @property
    def peak_count(self) -> int:
        """Highest active_count observed since creation or reset."""
        return self._peak_count

    @property
    def waiting(self) -> int:
        return self._waiting

    async def acquire(self) -> None:
        """Suspend until a slot is free, then take it."""
        if self._active_count >= self.max_concurrent:
            self._waiting += 1
            try:
                while self._active_count >= self.max_concurrent:
                    logger.debug(
                        "Concurrency ceiling reached, waiting",
                        extra={
                            "active": self._active_count,
                            "max_concurrent": self.max_concurrent,
                            "poll_interval_ms": self.poll_interval_ms,
                        },
                    )
                    if self._sleep_fn is not None:
                        await self._sleep_fn(self.poll_interval_ms)
                    else:
                        await asyncio_sleep_ms(self.poll_interval_ms)
            finally:
                self._waiting -= 1
        # No await between the final check and the increment
        self._active_count += 1
        self._peak_count = max(self._peak_count, self._active_count)

    def release(self) -> None:
        """Give a slot back. Never drops below zero."""
        if self._active_count > 0:
            self._active_count -= 1
        if self.on_release is not None:
            self.on_release()

    @contextlib.asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Acquire a slot and release it on every exit path, including errors."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def reset(self) -> None:
        """Reset the peak. Held slots stay counted until released."""
        self._peak_count = self._active_count
