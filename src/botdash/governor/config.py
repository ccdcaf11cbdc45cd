"""Governor configuration.

GovernorConfig is frozen (immutable) and injected into a RequestGovernor at
construction time. RetryOptions carries validated per-call overrides.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from botdash.governor.endpoints import EndpointKey

ENV_PREFIX = "BOTDASH_GOV_"

DEFAULT_ENDPOINT_MIN_DELAY_MS: dict[EndpointKey, int] = {
    EndpointKey.PRICE_FEED: 15000,
    EndpointKey.GLOBAL_METRICS: 20000,
    EndpointKey.PROJECT_STATS: 5000,
    EndpointKey.PUBLIC_LISTING: 8000,
}


class GovernorConfig(BaseModel):
    """Request governor configuration (frozen).

    All durations are in milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Rate gate
    global_min_delay_ms: int = Field(
        default=2000,
        ge=0,
        description="Minimum spacing between any two dispatches",
    )
    endpoint_min_delay_ms: dict[EndpointKey, int] = Field(
        default_factory=lambda: dict(DEFAULT_ENDPOINT_MIN_DELAY_MS),
        description="Endpoint-specific minimum spacing (missing keys use global_min_delay_ms)",
    )

    # Concurrency limiter
    max_concurrent: int = Field(default=5, ge=1, description="Simultaneous in-flight requests")
    concurrency_batch_delay_ms: int = Field(
        default=10000,
        ge=1,
        description="Wait applied when at the concurrency ceiling before rechecking",
    )

    # Retry policy
    max_retries: int = Field(default=5, ge=0, description="Attempts after the first try")
    retry_base_delay_ms: int = Field(
        default=3000,
        ge=0,
        description="Backoff base for transient failures",
    )
    rate_limit_base_delay_ms: int = Field(
        default=5000,
        ge=0,
        description="Backoff base for 429 responses (systemic overload)",
    )
    max_retry_delay_ms: int = Field(default=30000, ge=0, description="Cap on computed backoff")
    rate_limit_jitter_ms: int = Field(default=1000, ge=0, description="Upper bound of 429 jitter")
    transient_jitter_ms: int = Field(
        default=500,
        ge=0,
        description="Upper bound of transient-failure jitter",
    )

    @field_validator("endpoint_min_delay_ms")
    @classmethod
    def _check_endpoint_delays(cls, v: dict[EndpointKey, int]) -> dict[EndpointKey, int]:
        for key, delay in v.items():
            if delay < 0:
                raise ValueError(f"endpoint_min_delay_ms[{key.value}] must be >= 0, got {delay}")
        return v

    def min_delay_for(self, key: EndpointKey) -> int:
        """Minimum spacing for an endpoint key (override or global default)."""
        return self.endpoint_min_delay_ms.get(key, self.global_min_delay_ms)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> GovernorConfig:
        """
        Build a config from BOTDASH_GOV_<FIELD> environment variables.

        Scalar fields map by upper-cased name (BOTDASH_GOV_MAX_CONCURRENT=3).
        Endpoint overrides use the key name, e.g.
        BOTDASH_GOV_ENDPOINT_PRICE_FEED=15000.

        Args:
            environ: Mapping to read from (default: os.environ).
            **overrides: Explicit values that win over the environment.

        Raises:
            ValueError: If a variable is not an integer or fails validation.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        for name in cls.model_fields:
            if name == "endpoint_min_delay_ms":
                continue
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = _parse_int(name, raw)

        endpoint_delays = dict(DEFAULT_ENDPOINT_MIN_DELAY_MS)
        for key in EndpointKey:
            env_name = f"{ENV_PREFIX}ENDPOINT_{key.name}"
            raw = env.get(env_name)
            if raw is not None:
                endpoint_delays[key] = _parse_int(env_name, raw)
        values["endpoint_min_delay_ms"] = endpoint_delays

        values.update(overrides)
        return cls(**values)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class RetryOptions(BaseModel):
    """Per-call retry overrides. None means "use the governor default"."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: int | None = Field(default=None, ge=0)
    base_delay_ms: int | None = Field(default=None, ge=0)
    max_delay_ms: int | None = Field(default=None, ge=0)
