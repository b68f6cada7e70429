#!/usr/bin/env python3
"""
Run one delivery pipeline step against the database, for cron use.

Usage:
    python scripts/run_delivery_sweep.py schedule --content-id 42
    python scripts/run_delivery_sweep.py process
    python scripts/run_delivery_sweep.py retry [--max-retries 3]

Exits non-zero when the content to schedule does not exist.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
load_dotenv(dotenv_path=env_path)

# Add project root to path
sys.path.insert(0, str(project_root))

from sqlmodel import Session
from quantumbets.database.engine import engine
from quantumbets.core.config import settings
from quantumbets.core.exceptions import NotFoundError
from quantumbets.services.delivery_service import delivery_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("run_delivery_sweep")


def run(args) -> int:
    with Session(engine) as db:
        if args.command == "schedule":
            try:
                result = delivery_service.schedule_delivery(db, args.content_id)
            except NotFoundError as e:
                logger.error(e.message)
                return 1
            print(f"Scheduled {result['scheduled']} deliveries for content {args.content_id}")

        elif args.command == "process":
            result = asyncio.run(delivery_service.process_pending_deliveries(db))
            print(f"Processed {result['processed']} deliveries, {result['failed']} failed")

        elif args.command == "retry":
            result = delivery_service.retry_failed_deliveries(db, args.max_retries)
            print(f"Reset {result['retried']} failed deliveries to pending")

    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run one step of the QuantumBets delivery pipeline"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    schedule = subparsers.add_parser("schedule", help="Create pending deliveries for a content item")
    schedule.add_argument("--content-id", type=int, required=True, help="Content ID to schedule")

    subparsers.add_parser("process", help="Send all pending deliveries")

    retry = subparsers.add_parser("retry", help="Reset failed deliveries under the retry ceiling")
    retry.add_argument(
        "--max-retries",
        type=int,
        default=settings.DELIVERY_MAX_RETRIES,
        help=f"Retry ceiling (default: {settings.DELIVERY_MAX_RETRIES})"
    )

    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
