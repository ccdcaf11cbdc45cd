"""
Endpoint classification for the request governor.

Every outbound call is mapped to an EndpointKey before it reaches the rate
gate. Keys group endpoints the backend throttles the same way, so spacing rules
apply per class rather than per raw URL (raw URLs contain project ids).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit


class EndpointKey(str, Enum):
    """Logical endpoint class used for endpoint-specific spacing."""

    PRICE_FEED = "price-feed"
    GLOBAL_METRICS = "global-metrics"
    PROJECT_STATS = "project-stats"
    PUBLIC_LISTING = "public-listing"
    DEFAULT = "default"


@dataclass(frozen=True)
class EndpointRule:
    """A single classification rule: any pattern match yields `key`."""

    key: EndpointKey
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, path: str) -> bool:
        return any(p.search(path) for p in self.patterns)


def _rule(key: EndpointKey, *patterns: str) -> EndpointRule:
    return EndpointRule(key=key, patterns=tuple(re.compile(p) for p in patterns))


# Order matters: first match wins. Public listing sits before project stats so
# "/projects/public" never counts as a project id.
DEFAULT_RULES: tuple[EndpointRule, ...] = (
    _rule(EndpointKey.PRICE_FEED, r"/price", r"price-feed", r"/ticker"),
    _rule(
        EndpointKey.GLOBAL_METRICS,
        r"/metrics/global",
        r"/stats/global",
        r"global-metrics",
        r"/dashboard/metrics",
    ),
    _rule(
        EndpointKey.PUBLIC_LISTING,
        r"/public-projects",
        r"/projects/public",
        r"public-listing",
    ),
    _rule(
        EndpointKey.PROJECT_STATS,
        r"/projects/[^/]+/(volume|stats|metrics)",
        r"project-stats",
    ),
)


def normalize_target(target: str) -> str:
    """Reduce a URL or logical name to a lower-cased path without query string.

    Malformed URLs (e.g. an unclosed IPv6 bracket) fall back to the raw
    target with any query string cut off.
    """
    raw = target.strip()
    try:
        return urlsplit(raw).path.lower()
    except ValueError:
        return raw.split("?", 1)[0].lower()


@dataclass(frozen=True)
class EndpointClassifier:
    """
    Ordered substring/pattern classifier for request targets.

    Pure and total: classify() never raises and falls back to
    EndpointKey.DEFAULT when no rule matches.
    """

    rules: tuple[EndpointRule, ...] = field(default=DEFAULT_RULES)

    def classify(self, target: str) -> EndpointKey:
        """
        Map a request target to its EndpointKey.

        Args:
            target: Full URL, path, or logical endpoint name (e.g. "price-feed").

        Returns:
            The key of the first matching rule, or EndpointKey.DEFAULT.
        """
        if not target:
            return EndpointKey.DEFAULT
        path = normalize_target(target)
        for rule in self.rules:
            if rule.matches(path):
                return rule.key
        return EndpointKey.DEFAULT


_DEFAULT_CLASSIFIER = EndpointClassifier()


def classify(target: str) -> EndpointKey:
    """Classify a target with the default rule set."""
    return _DEFAULT_CLASSIFIER.classify(target)
