"""
REST client for the bot dashboard backend.

Every call goes through RequestGovernor.guarded_call, so spacing, concurrency
and retry rules apply uniformly no matter which view issued the request. The
transport's only job is to turn non-2xx responses into ApiError with the
status code attached.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson

from botdash.client.types import ClientConfig, WalletBalance
from botdash.governor.errors import ApiError
from botdash.governor.scheduler import RequestGovernor

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def _parse_retry_after_ms(headers: Any) -> int | None:
    """Read Retry-After (seconds) as milliseconds, ignoring HTTP-date values."""
    raw = headers.get("Retry-After") if headers else None
    if raw is None:
        return None
    with contextlib.suppress(ValueError, TypeError):
        return int(float(raw) * 1000)
    return None


def _unwrap(payload: Any, name: str) -> Any:
    """Extract `data.<name>` from the backend's {"status", "data"} envelope."""
    if isinstance(payload, dict):
        data = payload.get("data", payload)
        if isinstance(data, dict) and name in data:
            return data[name]
        return data
    return payload


class DashboardRestClient:
    """
    Async REST client for the dashboard backend.

    Owns an aiohttp session; the governor may be shared between clients so
    that all of them respect the same spacing and concurrency budget.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        governor: RequestGovernor | None = None,
    ) -> None:
        """
        Initialize the REST client.

        Args:
            config: Client configuration.
            governor: Shared request governor (a private one is created if None).
        """
        self._config = config or ClientConfig()
        self._governor = governor or RequestGovernor()
        self._session: aiohttp.ClientSession | None = None

    @property
    def governor(self) -> RequestGovernor:
        return self._governor

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_ms / 1000)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self._config.default_headers,
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> DashboardRestClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        max_retries: int | None = None,
    ) -> Any:
        """
        Make a governed HTTP request.

        Args:
            method: HTTP method.
            endpoint: API path appended to base_url; also used for classification.
            params: Query parameters.
            json_body: Body serialized as JSON.
            max_retries: Per-call retry budget override.

        Returns:
            Decoded JSON body (None for empty responses).

        Raises:
            ApiError: On non-2xx responses, after retries for 429/5xx.
            aiohttp.ClientError: On network errors after retries.
        """
        url = f"{self._config.base_url}{endpoint}"

        async def operation() -> Any:
            return await self._send(method, url, params=params, json_body=json_body)

        return await self._governor.guarded_call(endpoint, operation, max_retries=max_retries)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None,
        json_body: Any,
    ) -> Any:
        """Single HTTP attempt. Raises ApiError for any status >= 400."""
        session = await self._get_session()
        data = orjson.dumps(json_body) if json_body is not None else None

        async with session.request(method, url, params=params, data=data) as response:
            if response.status >= 400:
                text = await response.text()
                retry_after_ms = _parse_retry_after_ms(response.headers)
                log = logger.warning if response.status == 429 else logger.error
                log(
                    "HTTP error",
                    extra={
                        "url": url,
                        "status": response.status,
                        "retry_after_ms": retry_after_ms,
                        "body": text[:500],
                    },
                )
                raise ApiError(
                    f"{method} {response.status}: {text[:200]}",
                    status=response.status,
                    body=text,
                    retry_after_ms=retry_after_ms,
                )

            raw = await response.read()
            if not raw:
                return None
            return orjson.loads(raw)

    # --- Projects -----------------------------------------------------------

    async def get_projects(self) -> list[dict[str, Any]]:
        """Fetch the current user's projects."""
        payload = await self.request("GET", "/projects")
        projects = _unwrap(payload, "projects")
        return projects if isinstance(projects, list) else []

    async def get_project(self, project_id: str) -> dict[str, Any]:
        """Fetch one project by id."""
        payload = await self.request("GET", f"/projects/{project_id}")
        project: dict[str, Any] = _unwrap(payload, "project")
        return project

    async def get_volume_data(self, project_id: str) -> Any:
        """Fetch trading volume statistics for a project."""
        payload = await self.request("GET", f"/projects/{project_id}/volume")
        return _unwrap(payload, "volumeData")

    async def get_public_projects(self, page: int = 1, limit: int = 20) -> list[dict[str, Any]]:
        """Fetch one page of the public project listing."""
        payload = await self.request(
            "GET",
            "/public-projects",
            params={"page": str(page), "limit": str(limit)},
        )
        projects = _unwrap(payload, "projects")
        return projects if isinstance(projects, list) else []

    # --- Market data --------------------------------------------------------

    async def get_price(self, symbol: str = "BNB") -> float | None:
        """Fetch the latest USD price for a native token, or None if the payload has none."""
        payload = await self.request("GET", f"/price/{symbol.lower()}")
        price = _unwrap(payload, "price")
        try:
            return float(str(price))
        except (ValueError, TypeError):
            logger.warning("Unexpected price payload", extra={"symbol": symbol})
            return None

    async def get_global_metrics(self) -> dict[str, Any]:
        """Fetch platform-wide aggregate metrics."""
        payload = await self.request("GET", "/metrics/global")
        metrics = _unwrap(payload, "metrics")
        return metrics if isinstance(metrics, dict) else {}

    # --- Wallets and deployment jobs -----------------------------------------

    async def get_wallet_balances(self, addresses: Sequence[str]) -> list[WalletBalance]:
        """Fetch balances for a set of bot wallets."""
        payload = await self.request(
            "POST",
            "/wallets/balances",
            json_body={"walletAddresses": list(addresses)},
        )
        rows = _unwrap(payload, "balances")
        balances: list[WalletBalance] = []
        if not isinstance(rows, list):
            return balances
        for raw in rows:
            try:
                balances.append(WalletBalance.from_raw(raw))
            except (KeyError, TypeError) as e:
                logger.warning("Failed to parse wallet balance", extra={"error": str(e)})
        return balances

    async def get_job_status(self, job_id: str) -> dict[str, Any]:
        """Fetch the status of a contract deployment/verification job."""
        payload = await self.request("GET", f"/contracts/job/{job_id}")
        status: dict[str, Any] = _unwrap(payload, "job")
        return status
