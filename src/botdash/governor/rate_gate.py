"""
Rate gate: minimum spacing between dispatches.

Two spacing rules must both hold before a request is dispatched:
- global: any two dispatches are at least global_min_delay_ms apart
- per endpoint: two dispatches sharing an EndpointKey are at least that
  key's min delay apart

Timestamps are stamped at dispatch time, before the caller's operation runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from botdash.governor.config import GovernorConfig
from botdash.governor.endpoints import EndpointKey

logger = logging.getLogger(__name__)

SleepFn = Callable[[int], Awaitable[None]]


async def asyncio_sleep_ms(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000.0)


@dataclass
class RateState:
    """Dispatch bookkeeping for one EndpointKey."""

    min_delay_ms: int
    last_request_ms: int | None = None
    dispatch_count: int = 0


@dataclass
class RateGate:
    """
    Enforces global and per-endpoint dispatch spacing.

    The check and the stamp happen with no await in between, so two callers
    racing through the gate can never both dispatch on a stale timestamp.
    A caller that wakes up and finds a newer stamp simply waits again.
    """

    config: GovernorConfig = field(default_factory=GovernorConfig)

    _states: dict[EndpointKey, RateState] = field(default_factory=dict, init=False)
    _last_request_ms: int | None = field(default=None, init=False)

    _time_fn: Callable[[], int] | None = field(default=None)
    _sleep_fn: SleepFn | None = field(default=None)

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.monotonic() * 1000)

    async def _sleep_ms(self, delay_ms: int) -> None:
        if self._sleep_fn is not None:
            await self._sleep_fn(delay_ms)
        else:
            await asyncio_sleep_ms(delay_ms)

    def state_for(self, key: EndpointKey) -> RateState | None:
        """Get rate state for a key, or None if it was never dispatched."""
        return self._states.get(key)

    @property
    def last_request_ms(self) -> int | None:
        return self._last_request_ms

    def get_wait_time_ms(self, key: EndpointKey) -> int:
        """
        Get time to wait before a request for `key` may be dispatched.

        Args:
            key: Endpoint key of the pending request.

        Returns:
            Milliseconds to wait (0 if it can dispatch now).
        """
        now_ms = self._now_ms()

        global_wait = 0
        if self._last_request_ms is not None:
            global_wait = self.config.global_min_delay_ms - (now_ms - self._last_request_ms)

        endpoint_wait = 0
        state = self._states.get(key)
        if state is not None and state.last_request_ms is not None:
            endpoint_wait = state.min_delay_ms - (now_ms - state.last_request_ms)

        return max(0, global_wait, endpoint_wait)

    def _stamp(self, key: EndpointKey) -> None:
        now_ms = self._now_ms()
        state = self._states.get(key)
        if state is None:
            state = RateState(min_delay_ms=self.config.min_delay_for(key))
            self._states[key] = state
        state.last_request_ms = now_ms
        state.dispatch_count += 1
        self._last_request_ms = now_ms

    async def await_turn(self, key: EndpointKey) -> int:
        """
        Suspend until `key` may dispatch, then stamp the dispatch time.

        Args:
            key: Endpoint key of the request about to be dispatched.

        Returns:
            Total milliseconds spent waiting.
        """
        waited_ms = 0
        while True:
            wait_ms = self.get_wait_time_ms(key)
            if wait_ms <= 0:
                self._stamp(key)
                if waited_ms:
                    logger.debug(
                        "Rate gate released request",
                        extra={"endpoint_key": key.value, "waited_ms": waited_ms},
                    )
                return waited_ms
            start_ms = self._now_ms()
            await self._sleep_ms(wait_ms)
            waited_ms += max(0, self._now_ms() - start_ms)

    def reset(self) -> None:
        """Forget all dispatch timestamps."""
        self._states.clear()
        self._last_request_ms = None

    def get_status(self) -> dict[str, int | None]:
        """Get last-dispatch timestamps per endpoint key for observability."""
        status: dict[str, int | None] = {"global": self._last_request_ms}
        for key, state in self._states.items():
            status[key.value] = state.last_request_ms
        return status
