#!/usr/bin/env python3
"""
Retention sweep runner.

Runs one retention sweep against the configured MongoDB and exits. Use it
from cron when the in-process RetentionWorker is disabled.

    python start_worker.py --days 365 --batch-size 1000 --dry-run
"""

import argparse
import asyncio
import sys

from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import AppError
from repositories.click_repository import ClickRepository
from schemas.dto.requests.analytics import RetentionRequest, parse_request
from services.retention_service import RetentionService
from shared.logging import get_logger

log = get_logger("start_worker")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete click events older than the retention period.")
    parser.add_argument("--days", type=int, default=None, help="retention period in days")
    parser.add_argument("--batch-size", type=int, default=None, help="events deleted per batch")
    parser.add_argument("--dry-run", action="store_true", help="only count what would be deleted")
    return parser.parse_args(argv)


async def run_sweep(settings: AppSettings, args: argparse.Namespace):
    analytics = settings.analytics
    request = parse_request(
        RetentionRequest,
        {
            "retention_days": (
                args.days if args.days is not None else analytics.retention_days
            ),
            "batch_size": (
                args.batch_size
                if args.batch_size is not None
                else analytics.retention_batch_size
            ),
            "dry_run": args.dry_run,
        },
    )

    client: AsyncMongoClient = AsyncMongoClient(settings.db.mongodb_uri)
    try:
        db = client[settings.db.db_name]
        clicks = ClickRepository(
            db[settings.db.clicks_collection], db[settings.db.visitors_collection]
        )
        service = RetentionService(clicks, pause_seconds=analytics.retention_pause_seconds)
        return await service.purge_older_than(
            request.retention, request.batch_size, dry_run=request.dry_run
        )
    finally:
        await client.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    log.info("retention_sweep_starting", days=args.days, dry_run=args.dry_run)
    try:
        result = asyncio.run(run_sweep(AppSettings(), args))
    except KeyboardInterrupt:
        log.warning("retention_sweep_interrupted")
        return 130
    except AppError as e:
        log.error("retention_sweep_failed", error=e.message, code=e.error_code)
        return 1
    print(result.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
