#!/usr/bin/env python3
"""Trigger batch reclassification runs against a deployed service.

Calls POST /cron/reclassify with the shared secret, optionally repeating
until nothing is left to reclassify.

Usage:
    # One batch with the service defaults
    python scripts/reclassify.py --url https://triage.example.com

    # Drain a single workspace, 100 items per batch
    python scripts/reclassify.py --workspace ws-123 --limit 100 --until-done
"""

import argparse
import logging
import os
import sys
import time
from typing import Any, Optional

import requests

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Configuration
DEFAULT_SERVICE_URL = os.environ.get("TRIAGE_SERVICE_URL", "http://localhost:8080")
REQUEST_TIMEOUT = 600  # A full batch of 100 items with 20s step timeouts
PAUSE_BETWEEN_RUNS = 5
MAX_RUNS = 50


def trigger_run(
    url: str,
    secret: str,
    confidence_threshold: Optional[float] = None,
    limit: Optional[int] = None,
    workspace_id: Optional[str] = None,
) -> dict[str, Any]:
    """Call the reclassification endpoint once.

    Returns:
        The batch summary

    Raises:
        requests.exceptions.RequestException: On network or HTTP errors
    """
    payload = {
        key: value
        for key, value in {
            "confidence_threshold": confidence_threshold,
            "limit": limit,
            "workspace_id": workspace_id,
        }.items()
        if value is not None
    }

    response = requests.post(
        f"{url.rstrip('/')}/cron/reclassify",
        json=payload,
        headers={"Authorization": f"Bearer {secret}"},
        timeout=REQUEST_TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


def print_summary(summary: dict[str, Any]) -> None:
    print(
        f"processed={summary['processed_count']} "
        f"updated={summary['updated_count']} "
        f"skipped={summary['skipped_count']} "
        f"errors={len(summary.get('errors', []))} "
        f"remaining={summary['remaining']}"
    )
    for error in summary.get("errors", []):
        print(f"  {error['id']}: {error['message']}")


def main():
    parser = argparse.ArgumentParser(
        description="Trigger batch reclassification of weakly-classified feedback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        default=DEFAULT_SERVICE_URL,
        help=f"Service base URL, default: {DEFAULT_SERVICE_URL}",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Reclassify items below this confidence (service default: 0.6)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Items per batch, 1-100 (service default: 40)",
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help="Only reclassify this workspace",
    )
    parser.add_argument(
        "--until-done",
        action="store_true",
        help="Repeat batches until nothing remains or a batch makes no progress",
    )

    args = parser.parse_args()

    secret = os.environ.get("CRON_SECRET")
    if not secret:
        logger.error("CRON_SECRET is not set")
        sys.exit(1)

    runs = 0
    while True:
        runs += 1
        try:
            summary = trigger_run(
                args.url,
                secret,
                confidence_threshold=args.threshold,
                limit=args.limit,
                workspace_id=args.workspace,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Reclassification request failed: {e}")
            sys.exit(1)

        print_summary(summary)

        if not args.until_done:
            break
        remaining = summary["remaining"]
        if remaining == 0 or remaining == "unknown":
            break
        if summary["updated_count"] == 0:
            logger.warning("Batch made no progress, stopping")
            break
        if runs >= MAX_RUNS:
            logger.warning(f"Stopping after {MAX_RUNS} runs, {remaining} items remain")
            break
        time.sleep(PAUSE_BETWEEN_RUNS)


if __name__ == "__main__":
    main()
