"""Tests for error classification."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest

from botdash.governor import (
    ApiError,
    ErrorClass,
    GovernorClosedError,
    classify_error,
    extract_status,
)


class TestClassifyError:
    """Tests for classify_error()."""

    def test_429_is_rate_limited(self) -> None:
        assert classify_error(ApiError("slow down", status=429)) == ErrorClass.RATE_LIMITED

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 408])
    def test_server_errors_are_transient(self, status: int) -> None:
        assert classify_error(ApiError("oops", status=status)) == ErrorClass.TRANSIENT

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    def test_client_errors_are_fatal(self, status: int) -> None:
        assert classify_error(ApiError("bad", status=status)) == ErrorClass.FATAL

    def test_missing_status_is_transient(self) -> None:
        """Errors without a status code (network failures) are retried."""
        assert classify_error(ConnectionResetError("reset")) == ErrorClass.TRANSIENT
        assert classify_error(asyncio.TimeoutError()) == ErrorClass.TRANSIENT
        assert classify_error(aiohttp.ClientConnectionError("down")) == ErrorClass.TRANSIENT

    def test_validation_errors_are_fatal(self) -> None:
        assert classify_error(ValueError("bad amount")) == ErrorClass.FATAL
        assert classify_error(TypeError("wrong type")) == ErrorClass.FATAL

    def test_aiohttp_response_error_uses_status(self) -> None:
        exc = aiohttp.ClientResponseError(MagicMock(), (), status=429, message="Too Many Requests")
        assert classify_error(exc) == ErrorClass.RATE_LIMITED

    def test_governor_closed_is_fatal(self) -> None:
        assert classify_error(GovernorClosedError("closed")) == ErrorClass.FATAL

    def test_retryable_flag(self) -> None:
        assert ErrorClass.RATE_LIMITED.retryable
        assert ErrorClass.TRANSIENT.retryable
        assert not ErrorClass.FATAL.retryable


class TestExtractStatus:
    def test_status_attribute(self) -> None:
        assert extract_status(ApiError("x", status=503)) == 503

    def test_status_code_attribute(self) -> None:
        class HttpxStyleError(Exception):
            status_code = 429

        assert extract_status(HttpxStyleError()) == 429

    def test_response_status_code(self) -> None:
        exc = Exception("wrapped")
        exc.response = MagicMock(status_code=404)  # type: ignore[attr-defined]
        assert extract_status(exc) == 404

    def test_no_status(self) -> None:
        assert extract_status(RuntimeError("boom")) is None

    def test_bool_is_not_a_status(self) -> None:
        class Weird(Exception):
            status = True

        assert extract_status(Weird()) is None


class TestApiError:
    def test_attributes(self) -> None:
        err = ApiError("Too many", status=429, body="{}", retry_after_ms=2000)
        assert err.status == 429
        assert err.body == "{}"
        assert err.retry_after_ms == 2000
        assert err.is_rate_limited
        assert str(err) == "Too many"

    def test_not_rate_limited(self) -> None:
        assert not ApiError("nope", status=500).is_rate_limited
