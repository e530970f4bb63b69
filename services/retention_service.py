"""
Retention sweep for old click events.

Events older than the retention period are removed in bounded batches (the
ids of the oldest ``batch_size`` events, then a delete_many on those ids) with
a short pause between batches so the sweep never monopolises the database.
Visitor markers last seen before the same cutoff go afterwards.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

from errors import ValidationError
from repositories.protocol import ClickStore
from schemas.dto.responses.analytics import RetentionResult
from shared.datetime_utils import utc_now
from shared.logging import get_logger

log = get_logger(__name__)


class RetentionService:
    def __init__(self, clicks: ClickStore, pause_seconds: float = 0.1) -> None:
        self._clicks = clicks
        self._pause_seconds = pause_seconds

    async def purge_older_than(
        self,
        retention: timedelta,
        batch_size: int = 1000,
        dry_run: bool = False,
        pause_seconds: Optional[float] = None,
    ) -> RetentionResult:
        if retention <= timedelta(0):
            raise ValidationError("retention period must be positive", field="retention_days")
        if batch_size < 1:
            raise ValidationError("batch size must be at least 1", field="batch_size")
        pause = self._pause_seconds if pause_seconds is None else pause_seconds

        cutoff = utc_now() - retention
        if dry_run:
            would_delete = await self._clicks.count_older_than(cutoff)
            log.info(
                "retention_dry_run",
                cutoff=cutoff.isoformat(),
                would_delete_count=would_delete,
            )
            return RetentionResult(dry_run=True, cutoff=cutoff, would_delete_count=would_delete)

        deleted_total = 0
        batches = 0
        while True:
            deleted = await self._clicks.delete_older_than(cutoff, batch_size)
            if deleted == 0:
                break
            batches += 1
            deleted_total += deleted
            log.debug("retention_batch_deleted", batch=batches, deleted=deleted)
            if deleted < batch_size:
                break
            if pause > 0:
                await asyncio.sleep(pause)

        visitors_purged = await self._clicks.purge_visitors_older_than(cutoff)

        log.info(
            "retention_purge_completed",
            cutoff=cutoff.isoformat(),
            deleted_count=deleted_total,
            batches=batches,
            visitors_purged=visitors_purged,
        )
        return RetentionResult(
            dry_run=False,
            cutoff=cutoff,
            deleted_count=deleted_total,
            batches=batches,
            visitors_purged=visitors_purged,
        )
