"""Periodic retention sweep running inside the API process."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

from services.retention_service import RetentionService
from shared.logging import get_logger

log = get_logger(__name__)


class RetentionWorker:
    def __init__(
        self,
        service: RetentionService,
        retention: timedelta,
        batch_size: int = 1000,
        interval_seconds: float = 86400.0,
    ) -> None:
        self._service = service
        self._retention = retention
        self._batch_size = batch_size
        self._interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info(
            "retention_worker_started",
            interval_seconds=self._interval,
            retention_days=self._retention.days,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("retention_worker_stopped", runs=self.runs)

    async def run_once(self) -> None:
        """One sweep; failures are logged and the next interval tries again."""
        try:
            await self._service.purge_older_than(self._retention, self._batch_size)
            self.runs += 1
        except Exception as e:
            log.error(
                "retention_sweep_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            await self.run_once()
