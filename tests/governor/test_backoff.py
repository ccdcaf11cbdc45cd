"""
Tests for retry budget and backoff delay computation.

Delays are min(max_delay, base * 2**attempt_index) plus additive jitter.
"""

from __future__ import annotations

import random

import pytest

from botdash.governor import (
    ApiError,
    ErrorClass,
    GovernorConfig,
    RetryContext,
    RetryOptions,
    compute_retry_delay,
)


def _context(**kwargs: int) -> RetryContext:
    params = {
        "max_retries": 5,
        "base_delay_ms": 1000,
        "rate_limit_base_delay_ms": 2000,
        "max_delay_ms": 30000,
        "rate_limit_jitter_ms": 0,
        "transient_jitter_ms": 0,
    }
    params.update(kwargs)
    return RetryContext(**params)


class TestRetryContext:
    def test_starts_with_full_budget(self) -> None:
        ctx = _context(max_retries=3)
        assert ctx.attempts_remaining == 3
        assert ctx.attempt_index == 0
        assert not ctx.exhausted

    def test_consume_advances_index(self) -> None:
        ctx = _context(max_retries=3)
        ctx.consume()
        assert ctx.attempts_remaining == 2
        assert ctx.attempt_index == 1

    def test_last_attempt_and_exhaustion(self) -> None:
        ctx = _context(max_retries=2)
        ctx.consume()
        assert ctx.is_last_attempt
        ctx.consume()
        assert ctx.exhausted

    def test_zero_retries_is_exhausted_immediately(self) -> None:
        assert _context(max_retries=0).exhausted

    def test_record_failure(self) -> None:
        ctx = _context()
        err = RuntimeError("boom")
        ctx.record_failure(err, ErrorClass.TRANSIENT)
        assert ctx.attempts_made == 1
        assert ctx.last_error is err
        assert ctx.last_error_class == ErrorClass.TRANSIENT

    def test_from_config_defaults(self) -> None:
        config = GovernorConfig()
        ctx = RetryContext.from_config(config)
        assert ctx.max_retries == config.max_retries
        assert ctx.base_delay_ms == config.retry_base_delay_ms
        assert ctx.rate_limit_base_delay_ms == config.rate_limit_base_delay_ms
        assert ctx.max_delay_ms == config.max_retry_delay_ms

    def test_from_config_base_override_applies_to_both_paths(self) -> None:
        ctx = RetryContext.from_config(
            GovernorConfig(),
            RetryOptions(max_retries=2, base_delay_ms=100, max_delay_ms=800),
        )
        assert ctx.max_retries == 2
        assert ctx.base_delay_ms == 100
        assert ctx.rate_limit_base_delay_ms == 100
        assert ctx.max_delay_ms == 800


class TestComputeRetryDelay:
    def test_exponential_increase_transient(self) -> None:
        ctx = _context()
        delays = []
        for _ in range(4):
            delays.append(compute_retry_delay(ctx, ErrorClass.TRANSIENT))
            ctx.consume()
        assert delays == [1000, 2000, 4000, 8000]

    def test_rate_limited_uses_larger_base(self) -> None:
        ctx = _context()
        assert compute_retry_delay(ctx, ErrorClass.RATE_LIMITED) == 2000
        assert compute_retry_delay(ctx, ErrorClass.TRANSIENT) == 1000

    def test_cap_applies_before_jitter(self) -> None:
        ctx = _context(max_retries=10, max_delay_ms=5000)
        for _ in range(8):
            ctx.consume()
        assert compute_retry_delay(ctx, ErrorClass.TRANSIENT) == 5000

        jittered = _context(max_retries=10, max_delay_ms=5000, transient_jitter_ms=500)
        for _ in range(8):
            jittered.consume()
        delay = compute_retry_delay(jittered, ErrorClass.TRANSIENT, rng=random.Random(1))
        assert 5000 <= delay < 5500

    def test_non_decreasing_before_jitter(self) -> None:
        ctx = _context(max_retries=12, max_delay_ms=30000)
        previous = 0
        while not ctx.exhausted:
            delay = compute_retry_delay(ctx, ErrorClass.RATE_LIMITED)
            assert delay >= previous
            previous = delay
            ctx.consume()
        assert previous == 30000

    @pytest.mark.parametrize(
        ("error_class", "bound"),
        [(ErrorClass.RATE_LIMITED, 1000), (ErrorClass.TRANSIENT, 500)],
    )
    def test_jitter_bounds(self, error_class: ErrorClass, bound: int) -> None:
        ctx = _context(rate_limit_jitter_ms=1000, transient_jitter_ms=500)
        base = compute_retry_delay(_context(), error_class)
        rng = random.Random(42)
        for _ in range(200):
            delay = compute_retry_delay(ctx, error_class, rng=rng)
            assert base <= delay < base + bound

    def test_seeded_jitter_is_deterministic(self) -> None:
        ctx = _context(rate_limit_jitter_ms=1000)
        a = [compute_retry_delay(ctx, ErrorClass.RATE_LIMITED, rng=random.Random(7)) for _ in range(3)]
        b = [compute_retry_delay(ctx, ErrorClass.RATE_LIMITED, rng=random.Random(7)) for _ in range(3)]
        assert a == b


class TestRetryAfter:
    """A Retry-After hint on the last error is a floor for the delay."""

    def test_retry_after_longer_than_backoff_wins(self) -> None:
        ctx = _context(rate_limit_base_delay_ms=100)
        ctx.record_failure(ApiError("slow down", status=429, retry_after_ms=20000), ErrorClass.RATE_LIMITED)
        assert compute_retry_delay(ctx, ErrorClass.RATE_LIMITED) == 20000

    def test_retry_after_exceeds_cap(self) -> None:
        ctx = _context(max_delay_ms=5000)
        ctx.record_failure(ApiError("slow down", status=429, retry_after_ms=8000), ErrorClass.RATE_LIMITED)
        assert compute_retry_delay(ctx, ErrorClass.RATE_LIMITED) == 8000

    def test_shorter_retry_after_ignored(self) -> None:
        ctx = _context()
        ctx.record_failure(ApiError("slow down", status=429, retry_after_ms=500), ErrorClass.RATE_LIMITED)
        assert compute_retry_delay(ctx, ErrorClass.RATE_LIMITED) == 2000

    def test_non_api_error_has_no_hint(self) -> None:
        ctx = _context()
        ctx.record_failure(ConnectionResetError("reset"), ErrorClass.TRANSIENT)
        assert compute_retry_delay(ctx, ErrorClass.TRANSIENT) == 1000
