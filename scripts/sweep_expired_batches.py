#!/usr/bin/env python
"""Trigger the retention sweep; meant to run hourly from cron or a scheduler."""
from __future__ import annotations

import argparse
import logging
import os
import sys

import httpx

logger = logging.getLogger("sweep_expired_batches")


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete batch archives past the retention window")
    parser.add_argument(
        "--base-url",
        default=os.getenv("FACTURX_API_URL", "http://127.0.0.1:8000"),
        help="Base URL of the API",
    )
    parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    try:
        response = httpx.post(f"{args.base_url.rstrip('/')}/api/maintenance/sweep", timeout=args.timeout)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Sweep request failed: %s", exc)
        return 1

    logger.info("Swept %s expired batch archive(s)", response.json().get("swept", 0))
    return 0


if __name__ == "__main__":
    sys.exit(main())
