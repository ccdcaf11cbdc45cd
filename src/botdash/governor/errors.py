"""
Error taxonomy for the request governor.

- RATE_LIMITED: 429, recoverable via backoff + retry
- TRANSIENT: network failure, timeout, 5xx, no status at all
- FATAL: other 4xx and validation errors, never retried
"""

from __future__ import annotations

from enum import Enum


class ErrorClass(str, Enum):
    """Retry classification of a failed operation."""

    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT = "TRANSIENT"
    FATAL = "FATAL"

    @property
    def retryable(self) -> bool:
        return self is not ErrorClass.FATAL


class ApiError(Exception):
    """Structured backend error carrying the HTTP status code."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        *,
        body: str = "",
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.retry_after_ms = retry_after_ms

    @property
    def is_rate_limited(self) -> bool:
        """Check if this is a 429 response."""
        return self.status == 429

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, message={str(self)!r})"


class GovernorClosedError(Exception):
    """Raised for queued retries still pending when the governor is closed."""

    def __init__(self, message: str, queue_depth: int = 0) -> None:
        super().__init__(message)
        self.queue_depth = queue_depth


# Statuses that indicate a temporary condition on the backend side
_TRANSIENT_4XX = frozenset({408, 425})


def extract_status(exc: BaseException) -> int | None:
    """
    Read an HTTP-style status code off an exception.

    Supports ApiError / aiohttp.ClientResponseError (`status`) and
    requests/httpx-style errors (`status_code`, or `response.status_code`).
    """
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None) or getattr(response, "status", None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def classify_error(exc: BaseException) -> ErrorClass:
    """
    Classify a failure for retry purposes.

    Args:
        exc: Exception raised by the wrapped operation.

    Returns:
        RATE_LIMITED for 429, FATAL for other 4xx and validation errors,
        TRANSIENT otherwise (including errors without a status code).
    """
    if isinstance(exc, GovernorClosedError):
        return ErrorClass.FATAL
    status = extract_status(exc)
    if status is None:
        # Validation/programming errors will not fix themselves on retry
        if isinstance(exc, (ValueError, TypeError)):
            return ErrorClass.FATAL
        return ErrorClass.TRANSIENT
    if status == 429:
        return ErrorClass.RATE_LIMITED
    if 400 <= status < 500 and status not in _TRANSIENT_4XX:
        return ErrorClass.FATAL
    return ErrorClass.TRANSIENT
