"""Unit tests for the retention sweep and its periodic worker."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from errors import StorageError, ValidationError
from services.retention_service import RetentionService
from shared.datetime_utils import utc_now
from workers.retention_worker import RetentionWorker


def _seed(click_store, old: int, recent: int) -> None:
    url_id = ObjectId()
    for i in range(old):
        click_store.add_event(url_id=url_id, clicked_at=utc_now() - timedelta(days=400, minutes=i))
    for _ in range(recent):
        click_store.add_event(url_id=url_id, clicked_at=utc_now() - timedelta(days=1))


# ── RetentionService ──────────────────────────────────────────────────────────


class TestRetentionService:
    async def test_dry_run_then_purge(self, click_store):
        _seed(click_store, old=25, recent=3)
        service = RetentionService(click_store, pause_seconds=0)

        dry = await service.purge_older_than(timedelta(days=365), batch_size=10, dry_run=True)
        assert dry.dry_run is True
        assert dry.would_delete_count == 25
        assert dry.deleted_count == 0
        assert len(click_store.events) == 28

        result = await service.purge_older_than(timedelta(days=365), batch_size=10)
        assert result.deleted_count == 25
        assert result.batches == 3
        assert click_store.delete_calls == [10, 10, 10]
        assert len(click_store.events) == 3

    async def test_exact_multiple_of_batch(self, click_store):
        _seed(click_store, old=20, recent=0)
        result = await RetentionService(click_store, pause_seconds=0).purge_older_than(
            timedelta(days=365), batch_size=10
        )
        assert result.deleted_count == 20
        assert result.batches == 2
        # the third call finds nothing and ends the sweep
        assert click_store.delete_calls == [10, 10, 10]

    async def test_nothing_to_delete(self, click_store):
        _seed(click_store, old=0, recent=5)
        result = await RetentionService(click_store).purge_older_than(timedelta(days=30))
        assert result.deleted_count == 0
        assert result.batches == 0

    async def test_pauses_between_full_batches(self, click_store, mocker):
        _seed(click_store, old=5, recent=0)
        sleep = mocker.patch("services.retention_service.asyncio.sleep", new_callable=AsyncMock)
        await RetentionService(click_store, pause_seconds=0.25).purge_older_than(
            timedelta(days=365), batch_size=2
        )
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.25)

    async def test_purges_stale_visitor_markers(self, click_store):
        old_seen = utc_now() - timedelta(days=400)
        click_store.visitors[(ObjectId(), "198.51.100.1")] = {
            "first_seen_at": old_seen,
            "last_seen_at": old_seen,
        }
        fresh = (ObjectId(), "198.51.100.2")
        click_store.visitors[fresh] = {"first_seen_at": old_seen, "last_seen_at": utc_now()}

        result = await RetentionService(click_store).purge_older_than(timedelta(days=365))

        assert result.visitors_purged == 1
        assert list(click_store.visitors) == [fresh]

    @pytest.mark.parametrize(
        "retention, batch_size",
        [(timedelta(0), 10), (timedelta(days=-1), 10), (timedelta(days=1), 0)],
        ids=["zero_retention", "negative_retention", "zero_batch"],
    )
    async def test_invalid_arguments(self, click_store, retention, batch_size):
        with pytest.raises(ValidationError):
            await RetentionService(click_store).purge_older_than(retention, batch_size)


# ── RetentionWorker ───────────────────────────────────────────────────────────


class TestRetentionWorker:
    async def test_start_stop(self):
        service = MagicMock()
        service.purge_older_than = AsyncMock()
        worker = RetentionWorker(service, timedelta(days=30), interval_seconds=3600)

        await worker.start()
        assert worker.running is True
        await worker.stop()
        assert worker.running is False
        service.purge_older_than.assert_not_awaited()

    async def test_loop_runs_sweeps(self):
        service = MagicMock()
        service.purge_older_than = AsyncMock()
        worker = RetentionWorker(service, timedelta(days=30), batch_size=50, interval_seconds=0.01)

        await worker.start()
        await asyncio.sleep(0.1)
        await worker.stop()

        assert worker.runs >= 1
        service.purge_older_than.assert_awaited_with(timedelta(days=30), 50)

    async def test_failed_sweep_logged_not_raised(self):
        service = MagicMock()
        service.purge_older_than = AsyncMock(side_effect=StorageError("retention delete failed"))
        worker = RetentionWorker(service, timedelta(days=30))

        await worker.run_once()

        assert worker.runs == 0

    async def test_stop_without_start(self):
        worker = RetentionWorker(MagicMock(), timedelta(days=30))
        await worker.stop()
        assert worker.running is False
