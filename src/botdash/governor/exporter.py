"""
Prometheus metrics exporter for the request governor.

Exports low-cardinality metrics only. Raw targets carry project ids and wallet
addresses, so no target, path or project label is ever attached.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from botdash.governor.scheduler import RequestGovernor


# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "target",
        "url",
        "path",
        "query",
        "project_id",
        "wallet",
        "address",
        "job_id",
        "user_id",
        "token",
    }
)

# Counter name -> GovernorMetrics attribute
_COUNTERS: dict[str, tuple[str, str]] = {
    "botdash_gov_requests_dispatched": (
        "requests_dispatched",
        "Total requests dispatched through the rate gate",
    ),
    "botdash_gov_calls_succeeded": ("calls_succeeded", "Total guarded calls that succeeded"),
    "botdash_gov_calls_failed": (
        "calls_failed",
        "Total guarded calls that failed (fatal or retries exhausted)",
    ),
    "botdash_gov_rate_limited_errors": ("rate_limited_errors", "Total 429 responses observed"),
    "botdash_gov_transient_errors": (
        "transient_errors",
        "Total transient failures observed (network, timeout, 5xx)",
    ),
    "botdash_gov_fatal_errors": ("fatal_errors", "Total non-retryable failures observed"),
    "botdash_gov_retries_inline": ("retries_inline", "Total retries executed inline"),
    "botdash_gov_retries_queued": ("retries_queued", "Total retries deferred to the pending queue"),
    "botdash_gov_retries_exhausted": (
        "retries_exhausted",
        "Total guarded calls that ran out of retries",
    ),
}

REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        *_COUNTERS,
        "botdash_gov_current_concurrent",
        "botdash_gov_max_concurrent",
        "botdash_gov_current_queue_depth",
        "botdash_gov_max_gate_wait_ms",
    }
)


class GovernorMetricsExporter:
    """
    Mirrors RequestGovernor metrics into a Prometheus registry.

    Usage:
        registry = CollectorRegistry()
        exporter = GovernorMetricsExporter(registry=registry)
        exporter.update(governor)
        # generate_latest(registry) -> bytes for a /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            registry: Prometheus CollectorRegistry. If None, a private one is created.
        """
        self._registry = registry or CollectorRegistry()

        self._counters: dict[str, Counter] = {
            name: Counter(name, doc, registry=self._registry)
            for name, (_, doc) in _COUNTERS.items()
        }
        # Track last seen values for counter increments (counters are monotonic)
        self._last_seen: dict[str, int] = dict.fromkeys(_COUNTERS, 0)

        self._current_concurrent = Gauge(
            "botdash_gov_current_concurrent",
            "Current number of requests in flight",
            registry=self._registry,
        )
        self._max_concurrent = Gauge(
            "botdash_gov_max_concurrent",
            "Configured concurrency ceiling",
            registry=self._registry,
        )
        self._current_queue_depth = Gauge(
            "botdash_gov_current_queue_depth",
            "Current number of retries waiting in the pending queue",
            registry=self._registry,
        )
        self._max_gate_wait_ms = Gauge(
            "botdash_gov_max_gate_wait_ms",
            "Longest observed rate gate wait in milliseconds",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def update(self, governor: RequestGovernor) -> None:
        """
        Sync governor metrics into Prometheus.

        Call on every scrape or on a timer. A governor reset() makes counters
        drop; the baseline is re-taken rather than going negative.
        """
        metrics = governor.metrics
        status = governor.get_status()

        self._current_concurrent.set(status["concurrent"])
        self._max_concurrent.set(status["concurrent_max"])
        self._current_queue_depth.set(status["queue_depth"])
        self._max_gate_wait_ms.set(metrics.max_gate_wait_ms)

        for name, (attr, _) in _COUNTERS.items():
            current = getattr(metrics, attr)
            delta = current - self._last_seen[name]
            if delta > 0:
                self._counters[name].inc(delta)
            self._last_seen[name] = current
