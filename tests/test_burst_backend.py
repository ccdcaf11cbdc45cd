"""Tests for scripts/burst_backend.py."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from botdash.governor import GovernorConfig
from scripts.burst_backend import run_burst


def _response(status: int, raw: bytes = b"") -> MagicMock:
    response = MagicMock()
    response.status = status
    response.headers = {}
    response.read = AsyncMock(return_value=raw)
    response.text = AsyncMock(return_value=raw.decode())
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def _fake_request(method: str, url: str, **kwargs: Any) -> MagicMock:
    if url.endswith("/missing"):
        return _response(404, b'{"message":"not found"}')
    return _response(200, b'{"data":{}}')


class TestRunBurst:
    @pytest.mark.asyncio
    async def test_report_shape(self) -> None:
        config = GovernorConfig(global_min_delay_ms=0, endpoint_min_delay_ms={}, max_retries=0)

        with patch.object(aiohttp.ClientSession, "request", side_effect=_fake_request):
            report = await run_burst(
                base_url="http://backend.test/api",
                paths=["/price/bnb", "/missing"],
                calls=2,
                governor_config=config,
            )

        assert report["base_url"] == "http://backend.test/api"
        assert report["config"]["max_retries"] == 0
        assert len(report["results"]) == 4

        by_path = {(r["path"], r["index"]): r for r in report["results"]}
        ok = by_path[("/price/bnb", 0)]
        assert ok["outcome"] == "ok"
        assert ok["endpoint_key"] == "price-feed"

        missing = by_path[("/missing", 1)]
        assert missing["outcome"] == "ApiError"
        assert missing["status"] == 404
        assert missing["endpoint_key"] == "default"

        assert report["status"]["calls_in_flight"] == 0
        assert report["status"]["concurrent"] == 0
