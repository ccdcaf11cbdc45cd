"""
Request governor: the single entry point for outbound backend calls.

Every call passes, in order:
1. ConcurrencyLimiter (bounded in-flight requests)
2. RateGate (global + per-endpoint spacing, stamped at dispatch)
3. the wrapped operation
4. on failure, the retry policy: 429 and transient errors back off and retry
   (inline for the last 429 attempt, otherwise via the PendingQueue drain
   loop); fatal errors and exhausted budgets re-raise the original error.

All state lives on the governor instance; there are no module-level singletons.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import random
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from botdash.governor.backoff import RetryContext, compute_retry_delay
from botdash.governor.concurrency import ConcurrencyLimiter
from botdash.governor.config import GovernorConfig, RetryOptions
from botdash.governor.endpoints import EndpointClassifier, EndpointKey
from botdash.governor.errors import ErrorClass, classify_error
from botdash.governor.pending_queue import PendingQueue
from botdash.governor.rate_gate import RateGate, SleepFn, asyncio_sleep_ms

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallState(str, Enum):
    """Lifecycle of one guarded call."""

    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    QUEUED = "QUEUED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


_TERMINAL_STATES = frozenset({CallState.SUCCEEDED, CallState.FAILED})


@dataclass
class GuardedCall:
    """Bookkeeping for one guarded_call invocation."""

    call_id: int
    target: str
    key: EndpointKey
    state: CallState = CallState.PENDING
    attempts: int = 0
    history: list[CallState] = field(default_factory=lambda: [CallState.PENDING])

    def transition(self, state: CallState) -> None:
        if self.state in _TERMINAL_STATES:
            raise RuntimeError(f"call {self.call_id} already {self.state.value}")
        self.state = state
        self.history.append(state)


@dataclass
class GovernorMetrics:
    """Counters and gauges for governor observability."""

    # Counters
    requests_dispatched: int = 0
    calls_succeeded: int = 0
    calls_failed: int = 0
    rate_limited_errors: int = 0
    transient_errors: int = 0
    fatal_errors: int = 0
    retries_inline: int = 0
    retries_queued: int = 0
    retries_exhausted: int = 0

    # Gauges (current state)
    current_concurrent: int = 0
    current_queue_depth: int = 0

    # Accumulators for gate wait time
    total_gate_wait_ms: int = 0
    max_gate_wait_ms: int = 0


@dataclass
class RequestGovernor:
    """
    Outbound request governor with spacing, concurrency and retry control.

    Usage:
        governor = RequestGovernor(config=GovernorConfig())
        data = await governor.guarded_call("/projects/42/volume", fetch_volume)
        ...
        await governor.aclose()
    """

    config: GovernorConfig = field(default_factory=GovernorConfig)
    classifier: EndpointClassifier = field(default_factory=EndpointClassifier)

    metrics: GovernorMetrics = field(default_factory=GovernorMetrics, init=False)

    # Injection points for deterministic testing
    _time_fn: Callable[[], int] | None = field(default=None)
    _sleep_fn: SleepFn | None = field(default=None)
    _rng: random.Random | None = field(default=None)

    _gate: RateGate = field(init=False)
    _limiter: ConcurrencyLimiter = field(init=False)
    _queue: PendingQueue = field(init=False)
    _calls: dict[int, GuardedCall] = field(default_factory=dict, init=False)
    _call_ids: itertools.count[int] = field(default_factory=itertools.count, init=False)

    def __post_init__(self) -> None:
        self._gate = RateGate(config=self.config, _time_fn=self._time_fn, _sleep_fn=self._sleep_fn)
        self._limiter = ConcurrencyLimiter(
            max_concurrent=self.config.max_concurrent,
            poll_interval_ms=self.config.concurrency_batch_delay_ms,
            on_release=self._on_slot_released,
            _sleep_fn=self._sleep_fn,
        )
        self._queue = PendingQueue(
            spacing_ms=self.config.global_min_delay_ms,
            _time_fn=self._time_fn,
            _sleep_fn=self._sleep_fn,
        )

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

    @property
    def gate(self) -> RateGate:
        return self._gate

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    @property
    def queue(self) -> PendingQueue:
        return self._queue

    def _on_slot_released(self) -> None:
        self.metrics.current_concurrent = self._limiter.active_count
        # A freed slot may unblock queued retries
        self._queue.kick()

    async def _attempt(
        self,
        key: EndpointKey,
        operation: Callable[[], Awaitable[T]],
        call: GuardedCall,
        delay_ms: int = 0,
    ) -> T:
        """One attempt: optional backoff, then slot, gate, operation."""
        if delay_ms > 0:
            await self._sleep_ms(delay_ms)

        async with self._limiter.slot():
            self.metrics.current_concurrent = self._limiter.active_count
            waited_ms = await self._gate.await_turn(key)
            self.metrics.total_gate_wait_ms += waited_ms
            self.metrics.max_gate_wait_ms = max(self.metrics.max_gate_wait_ms, waited_ms)

            call.transition(CallState.EXECUTING)
            call.attempts += 1
            self.metrics.requests_dispatched += 1
            return await operation()

    async def guarded_call(
        self,
        target: str,
        operation: Callable[[], Awaitable[T]],
        *,
        max_retries: int | None = None,
        base_delay_ms: int | None = None,
        max_delay_ms: int | None = None,
    ) -> T:
        """
        Run `operation` under the governor's spacing, concurrency and retry rules.

        Args:
            target: Request URL, path, or logical endpoint name (classified
                into an EndpointKey).
            operation: Zero-argument coroutine factory. It is called once per
                attempt and must raise an error exposing `status` (or
                `status_code`) when the backend responds with an error.
            max_retries: Attempts after the first try (default from config).
            base_delay_ms: Backoff base; overrides both the transient and the
                429 base for this call.
            max_delay_ms: Cap on computed backoff before jitter.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error raised by `operation`, unchanged, once
                retries are exhausted or immediately for fatal errors.
            GovernorClosedError: If the governor closed while a retry was queued.
            asyncio.CancelledError: If the calling task is cancelled; queued
                retries for this call are abandoned.
        """
        options = RetryOptions(
            max_retries=max_retries,
            base_delay_ms=base_delay_ms,
            max_delay_ms=max_delay_ms,
        )
        ctx = RetryContext.from_config(self.config, options)
        key = self.classifier.classify(target)
        call = GuardedCall(call_id=next(self._call_ids), target=target, key=key)
        self._calls[call.call_id] = call
        started_ms = self._now_ms()

        delay_ms = 0
        queued = False
        try:
            while True:
                try:
                    if queued:
                        call.transition(CallState.QUEUED)
                        future = self._queue.submit(
                            lambda d=delay_ms: self._attempt(key, operation, call, d),
                            key,
                        )
                        self.metrics.current_queue_depth = len(self._queue)
                        result: T = await future
                    else:
                        result = await self._attempt(key, operation, call, delay_ms)
                except Exception as exc:
                    error_class = classify_error(exc)
                    ctx.record_failure(exc, error_class)
                    self._count_error(error_class)

                    if not error_class.retryable:
                        call.transition(CallState.FAILED)
                        self.metrics.calls_failed += 1
                        logger.warning(
                            "Request failed, not retryable",
                            extra={
                                "endpoint_key": key.value,
                                "error_class": error_class.value,
                                "error": str(exc),
                            },
                        )
                        raise

                    if ctx.exhausted:
                        call.transition(CallState.FAILED)
                        self.metrics.calls_failed += 1
                        self.metrics.retries_exhausted += 1
                        logger.error(
                            "Retries exhausted",
                            extra={
                                "endpoint_key": key.value,
                                "error_class": error_class.value,
                                "attempts": call.attempts,
                                "elapsed_ms": self._now_ms() - started_ms,
                                "error": str(exc),
                            },
                        )
                        raise

                    delay_ms = compute_retry_delay(ctx, error_class, rng=self._rng)
                    # The last 429 retry skips the queue unless it is already busy
                    queued = not (
                        error_class is ErrorClass.RATE_LIMITED
                        and ctx.is_last_attempt
                        and not self._queue.is_busy
                    )
                    ctx.consume()
                    call.transition(CallState.RETRY_SCHEDULED)
                    if queued:
                        self.metrics.retries_queued += 1
                    else:
                        self.metrics.retries_inline += 1
                    logger.warning(
                        "Retry scheduled",
                        extra={
                            "endpoint_key": key.value,
                            "error_class": error_class.value,
                            "delay_ms": delay_ms,
                            "attempts_remaining": ctx.attempts_remaining,
                            "queued": queued,
                        },
                    )
                    continue

                call.transition(CallState.SUCCEEDED)
                self.metrics.calls_succeeded += 1
                return result
        finally:
            self._calls.pop(call.call_id, None)
            self.metrics.current_queue_depth = len(self._queue)
            self._queue.kick()

    def _count_error(self, error_class: ErrorClass) -> None:
        if error_class is ErrorClass.RATE_LIMITED:
            self.metrics.rate_limited_errors += 1
        elif error_class is ErrorClass.TRANSIENT:
            self.metrics.transient_errors += 1
        else:
            self.metrics.fatal_errors += 1

    @contextlib.asynccontextmanager
    async def permit(self, target: str) -> AsyncIterator[EndpointKey]:
        """
        Async context manager for callers that issue the request themselves.

        Applies the concurrency limit and rate gate once, without retries.
        The slot is released on every exit path.

        Usage:
            async with governor.permit("/projects/42/stats"):
                response = await session.get(url)
        """
        key = self.classifier.classify(target)
        async with self._limiter.slot():
            self.metrics.current_concurrent = self._limiter.active_count
            waited_ms = await self._gate.await_turn(key)
            self.metrics.total_gate_wait_ms += waited_ms
            self.metrics.max_gate_wait_ms = max(self.metrics.max_gate_wait_ms, waited_ms)
            self.metrics.requests_dispatched += 1
            yield key

    def active_calls(self) -> list[GuardedCall]:
        """Snapshot of guarded calls that have not finished yet."""
        return list(self._calls.values())

    def get_status(self) -> dict[str, Any]:
        """Get current governor status for observability."""
        states = Counter(call.state.value for call in self._calls.values())
        return {
            "concurrent": self._limiter.active_count,
            "concurrent_max": self.config.max_concurrent,
            "concurrency_waiters": self._limiter.waiting,
            "queue_depth": len(self._queue),
            "queue_draining": self._queue.is_draining,
            "calls_in_flight": len(self._calls),
            "calls_by_state": dict(states),
            "last_dispatch_ms": self._gate.get_status(),
        }

    def reset(self) -> None:
        """Reset spacing, peak concurrency and metrics.

        In-flight slots and the queue are left intact, so the concurrency
        ceiling still holds for calls that started before the reset.
        """
        self._gate.reset()
        self._limiter.reset()
        self.metrics = GovernorMetrics(
            current_concurrent=self._limiter.active_count,
            current_queue_depth=len(self._queue),
        )

    async def aclose(self) -> None:
        """Stop the drain loop; queued retries fail with GovernorClosedError."""
        await self._queue.aclose()
        self.metrics.current_queue_depth = 0
        logger.info("Request governor closed")
