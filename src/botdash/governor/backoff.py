"""
Retry budget and backoff delay computation.

Backoff grows as base * 2**attempt_index (attempt_index is 0 at the first
retry), is clamped to max_delay_ms, and only then gets additive jitter in
[0, jitter_ms). Jitter never scales the delay, so mocking it to zero gives
exact, testable delays. A Retry-After hint on the last error is a floor: the
server-requested wait wins over a shorter computed delay, even past the cap.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from botdash.governor.config import GovernorConfig, RetryOptions
from botdash.governor.errors import ApiError, ErrorClass


@dataclass
class RetryContext:
    """Mutable retry state for one guarded call."""

    max_retries: int
    base_delay_ms: int
    rate_limit_base_delay_ms: int
    max_delay_ms: int
    rate_limit_jitter_ms: int = 1000
    transient_jitter_ms: int = 500

    attempts_remaining: int = field(default=-1)
    attempts_made: int = field(default=0)
    last_error_class: ErrorClass | None = field(default=None)
    last_error: Exception | None = field(default=None)

    def __post_init__(self) -> None:
        if self.attempts_remaining < 0:
            self.attempts_remaining = self.max_retries

    @classmethod
    def from_config(
        cls,
        config: GovernorConfig,
        options: RetryOptions | None = None,
    ) -> RetryContext:
        """
        Build a context from governor defaults and per-call overrides.

        A per-call base_delay_ms replaces both the transient and the 429 base.
        """
        opts = options or RetryOptions()
        base = opts.base_delay_ms
        return cls(
            max_retries=config.max_retries if opts.max_retries is None else opts.max_retries,
            base_delay_ms=config.retry_base_delay_ms if base is None else base,
            rate_limit_base_delay_ms=config.rate_limit_base_delay_ms if base is None else base,
            max_delay_ms=config.max_retry_delay_ms
            if opts.max_delay_ms is None
            else opts.max_delay_ms,
            rate_limit_jitter_ms=config.rate_limit_jitter_ms,
            transient_jitter_ms=config.transient_jitter_ms,
        )

    @property
    def exhausted(self) -> bool:
        return self.attempts_remaining <= 0

    @property
    def attempt_index(self) -> int:
        """Index of the next retry, counted from 0 at the first retry."""
        return self.max_retries - self.attempts_remaining

    @property
    def is_last_attempt(self) -> bool:
        """True when exactly one retry is left."""
        return self.attempts_remaining == 1

    def record_failure(self, exc: Exception, error_class: ErrorClass) -> None:
        self.attempts_made += 1
        self.last_error = exc
        self.last_error_class = error_class

    def consume(self) -> None:
        """Spend one retry from the budget."""
        self.attempts_remaining -= 1


def compute_retry_delay(
    context: RetryContext,
    error_class: ErrorClass,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute the delay before the next retry.

    Args:
        context: Retry state; attempt_index selects the exponent and
            last_error may carry a Retry-After floor.
        error_class: RATE_LIMITED uses the larger base and jitter range.
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds.
    """
    if error_class is ErrorClass.RATE_LIMITED:
        base = context.rate_limit_base_delay_ms
        jitter_ms = context.rate_limit_jitter_ms
    else:
        base = context.base_delay_ms
        jitter_ms = context.transient_jitter_ms

    delay = min(context.max_delay_ms, base * (2 ** max(0, context.attempt_index)))

    if jitter_ms > 0:
        source = rng if rng is not None else random
        delay += source.uniform(0, jitter_ms)

    # Respect Retry-After if the backend sent one
    last_error = context.last_error
    if isinstance(last_error, ApiError) and last_error.retry_after_ms:
        delay = max(delay, last_error.retry_after_ms)

    return int(delay)
