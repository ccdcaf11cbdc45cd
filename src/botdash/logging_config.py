"""
Structured logging configuration for botdash.

Provides JSON-formatted structured logging with:
- Secret filtering (session tokens, wallet private keys, seed phrases)
- Low-cardinality fields (URLs reduced to paths, bodies redacted)

Usage:
    from botdash.logging_config import setup_logging, get_logger

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)
    logger.info("message", extra={"key": "value"})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

_URL_PATTERN = re.compile(r"(https?://[^\s\"'<>]+)")

# Order matters: private keys before generic hex-like tokens
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Raw 32-byte private keys (wallet exports)
    (re.compile(r"\b(0x)?[0-9a-fA-F]{64}\b"), "[PRIVATE_KEY]"),
    # JWTs (session tokens issued by the backend)
    (re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+"), "[JWT]"),
    # Bearer tokens
    (re.compile(r"\bbearer\s+[\w\-\.=]+", re.I), "[TOKEN]"),
    # key=value style secrets
    (
        re.compile(r"\b(api[_-]?key|private[_-]?key|secret|password)[=:]\s*['\"]?[^\s'\"&]+", re.I),
        "[REDACTED]",
    ),
    # Email addresses
    (re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w+\b"), "[EMAIL]"),
]

# Fields that never appear in logs (exact match, case-insensitive)
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "token",
        "access_token",
        "refresh_token",
        "authorization",
        "bearer",
        "cookie",
        "password",
        "secret",
        "api_key",
        "private_key",
        "privatekey",
        "mnemonic",
        "seed_phrase",
        "signature",
        "email",
    }
)

# Substrings that block a field wherever they appear in its name
_BLOCKED_SUBSTRINGS: tuple[str, ...] = ("private", "secret", "password", "mnemonic", "auth")

# High-cardinality or bulky fields and their replacement
HIGH_CARDINALITY_FIELDS: dict[str, str] = {
    "url": "endpoint",  # Extract path only
    "body": "[BODY]",
    "payload": "[PAYLOAD]",
    "params": "[PARAMS]",
    "wallet_addresses": "[WALLETS]",
}

_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


def _normalize_url(url: str) -> str:
    """Extract endpoint path from a URL (drops host and query string)."""
    return urlsplit(url).path or "/"


def _sanitize_url_in_text(match: re.Match[str]) -> str:
    path = _normalize_url(match.group(1))
    return path if path != "/" else "[URL]"


def _sanitize_text(text: str) -> str:
    """Sanitize free-form text (msg, exc): URLs to paths, secrets redacted."""
    if not text:
        return text

    result = _URL_PATTERN.sub(_sanitize_url_in_text, text)
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _is_blocked(key: str) -> bool:
    key_lower = key.lower()
    return key_lower in BLOCKED_FIELDS or any(s in key_lower for s in _BLOCKED_SUBSTRINGS)


def _filter_log_record(record: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Filter sensitive and high-cardinality fields from structured extras.

    Recursively filters nested dicts up to depth 3.
    """
    if _depth > 3:
        return {"_truncated": "max depth exceeded"}

    filtered: dict[str, Any] = {}

    for key, value in record.items():
        if _is_blocked(key):
            continue

        key_lower = key.lower()
        if key_lower in HIGH_CARDINALITY_FIELDS:
            if key_lower == "url" and isinstance(value, str):
                filtered["endpoint"] = _normalize_url(value)
            else:
                filtered[key] = HIGH_CARDINALITY_FIELDS[key_lower]
            continue

        if isinstance(value, (int, float, bool, type(None))):
            filtered[key] = value
        elif isinstance(value, str):
            filtered[key] = _sanitize_text(value)
        elif isinstance(value, (list, tuple)):
            filtered[key] = list(value) if len(value) <= 10 else f"[list:{len(value)} items]"
        elif isinstance(value, dict):
            filtered[key] = _filter_log_record(value, _depth=_depth + 1)
        else:
            filtered[key] = _sanitize_text(str(value))

    return filtered


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Collect `extra=` fields attached to a record, already filtered."""
    extra = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}
    return _filter_log_record(extra) if extra else {}


class JsonFormatter(logging.Formatter):
    """JSON log formatter, one object per line.

    Output format:
    {"ts":"2024-01-01T00:00:00.000+00:00","level":"INFO","logger":"module","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": _sanitize_text(record.getMessage()),
        }

        if record.levelno >= logging.WARNING:
            log_dict["file"] = record.filename
            log_dict["line"] = record.lineno

        if record.exc_info:
            log_dict["exc"] = _sanitize_text(self.formatException(record.exc_info))

        log_dict.update(_extra_fields(record))
        return json.dumps(log_dict, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for development, with the same filtering."""

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname:8s} {record.name}: {_sanitize_text(record.getMessage())}"
        extra = _extra_fields(record)
        if extra:
            base = f"{base} | " + " ".join(f"{k}={v}" for k, v in extra.items())
        return base


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (default INFO).
        json_format: Use JSON formatter (default True for production).
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)
