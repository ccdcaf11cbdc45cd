#!/usr/bin/env python3
"""
Exercise the dashboard backend through the request governor.

Fires a burst of concurrent GETs at one or more paths, all sharing one
RequestGovernor, and reports how each call ended and how long it took. Useful
for checking endpoint spacing and retry behavior against a live backend.

Usage:
    python -m scripts.burst_backend --base-url http://localhost:5000/api \
        --paths /price/bnb,/projects --calls 3

    # Faster spacing for a local stub backend
    python -m scripts.burst_backend --paths /metrics/global --global-min-delay-ms 200

Output (--out):
    JSON report with config, per-call results and the final governor status.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any

import orjson

from botdash.client import ClientConfig, DashboardRestClient
from botdash.governor import GovernorConfig, RequestGovernor, classify
from botdash.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def _call_one(client: DashboardRestClient, path: str, index: int) -> dict[str, Any]:
    start = time.monotonic()
    try:
        await client.request("GET", path)
        outcome, status = "ok", 200
    except Exception as e:
        outcome = type(e).__name__
        status = getattr(e, "status", None)
    return {
        "path": path,
        "endpoint_key": classify(path).value,
        "index": index,
        "outcome": outcome,
        "status": status,
        "elapsed_ms": int((time.monotonic() - start) * 1000),
    }


async def run_burst(
    *,
    base_url: str,
    paths: list[str],
    calls: int,
    governor_config: GovernorConfig,
) -> dict[str, Any]:
    """Run the call burst and return the report dict."""
    governor = RequestGovernor(config=governor_config)
    client = DashboardRestClient(ClientConfig(base_url=base_url), governor=governor)
    try:
        tasks = [_call_one(client, path, i) for path in paths for i in range(calls)]
        results = await asyncio.gather(*tasks)
    finally:
        await client.close()
        await governor.aclose()

    return {
        "base_url": base_url,
        "config": governor_config.model_dump(mode="json"),
        "results": sorted(results, key=lambda r: (r["path"], r["index"])),
        "status": governor.get_status(),
    }


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Exercise the dashboard backend through the request governor.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default="http://localhost:5000/api",
        help="Backend base URL (default: http://localhost:5000/api)",
    )
    parser.add_argument(
        "--paths",
        type=str,
        required=True,
        help="Comma-separated list of API paths (e.g., /price/bnb,/projects)",
    )
    parser.add_argument(
        "--calls",
        type=int,
        default=2,
        help="Calls per path (default: 2)",
    )
    parser.add_argument(
        "--global-min-delay-ms",
        type=int,
        default=None,
        help="Override global spacing (default: config/env)",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Override retry budget (default: config/env)",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Write JSON report to this file",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, json_format=False)

    overrides: dict[str, Any] = {}
    if args.global_min_delay_ms is not None:
        overrides["global_min_delay_ms"] = args.global_min_delay_ms
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries

    paths = [p.strip() for p in args.paths.split(",") if p.strip()]

    try:
        governor_config = GovernorConfig.from_env(**overrides)
        report = asyncio.run(
            run_burst(
                base_url=args.base_url,
                paths=paths,
                calls=args.calls,
                governor_config=governor_config,
            )
        )
    except Exception as e:
        logger.exception(f"Burst failed: {e}")
        return 1

    print("\n" + "=" * 60)
    print("BURST SUMMARY")
    print("=" * 60)
    for row in report["results"]:
        print(
            f"{row['path']:<28} #{row['index']:<3} {row['endpoint_key']:<15} "
            f"{row['outcome']:<16} {row['elapsed_ms']:>7}ms"
        )
    print("=" * 60)

    if args.out is not None:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_bytes(orjson.dumps(report, option=orjson.OPT_INDENT_2))
        print(f"Report:         {args.out}")

    failed = sum(1 for row in report["results"] if row["outcome"] != "ok")
    return 0 if failed == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
