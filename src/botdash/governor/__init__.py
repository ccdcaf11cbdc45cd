"""Outbound request governor for the dashboard backend.

Spacing (global and per endpoint), bounded concurrency, and retry with
exponential backoff and jitter, coordinated through a serial retry queue.
"""

from botdash.governor.backoff import RetryContext, compute_retry_delay
from botdash.governor.concurrency import ConcurrencyLimiter
from botdash.governor.config import GovernorConfig, RetryOptions
from botdash.governor.endpoints import EndpointClassifier, EndpointKey, EndpointRule, classify
from botdash.governor.errors import (
    ApiError,
    ErrorClass,
    GovernorClosedError,
    classify_error,
    extract_status,
)
from botdash.governor.pending_queue import PendingQueue, QueueItem
from botdash.governor.rate_gate import RateGate, RateState
from botdash.governor.scheduler import CallState, GovernorMetrics, GuardedCall, RequestGovernor

__all__ = [
    "ApiError",
    "CallState",
    "ConcurrencyLimiter",
    "EndpointClassifier",
    "EndpointKey",
    "EndpointRule",
    "ErrorClass",
    "GovernorClosedError",
    "GovernorConfig",
    "GovernorMetrics",
    "GuardedCall",
    "PendingQueue",
    "QueueItem",
    "RateGate",
    "RateState",
    "RequestGovernor",
    "RetryContext",
    "RetryOptions",
    "classify",
    "classify_error",
    "compute_retry_delay",
    "extract_status",
]
