"""Unit tests for the Mongo repositories against mocked async collections."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import StorageError
from repositories.click_repository import ClickQuery, ClickRepository
from repositories.url_repository import UrlRepository
from repositories.user_repository import UserRepository
from schemas.models.click import ClickEventDoc

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def _click() -> ClickEventDoc:
    return ClickEventDoc(url_id=ObjectId(), short_code="abc123", ip_address="198.51.100.7", clicked_at=NOW)


@pytest.fixture
def clicks_col():
    return AsyncMock()


@pytest.fixture
def visitors_col():
    return AsyncMock()


@pytest.fixture
def repo(clicks_col, visitors_col):
    return ClickRepository(clicks_col, visitors_col)


# ── ClickQuery ────────────────────────────────────────────────────────────────


class TestClickQuery:
    def test_every_url(self):
        assert ClickQuery().to_filter() == {}

    def test_single_url_window_and_bots(self):
        url_id = ObjectId()
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        q = ClickQuery.for_urls([url_id], start, NOW, exclude_bots=True)
        assert q.to_filter() == {
            "url_id": url_id,
            "clicked_at": {"$gte": start, "$lte": NOW},
            "is_bot": {"$ne": True},
        }

    def test_many_urls(self):
        ids = [ObjectId(), ObjectId()]
        assert ClickQuery.for_urls(ids).to_filter() == {"url_id": {"$in": ids}}

    def test_no_urls_matches_nothing(self):
        assert ClickQuery.for_urls([]).to_filter() == {"url_id": {"$in": []}}

    def test_with_window_keeps_other_criteria(self):
        url_id = ObjectId()
        q = ClickQuery.for_urls([url_id], exclude_bots=True).with_window(NOW)
        assert q.url_ids == (url_id,)
        assert q.exclude_bots is True
        assert q.to_filter()["clicked_at"] == {"$gte": NOW}


# ── ClickRepository writes ────────────────────────────────────────────────────


class TestClickWrites:
    async def test_insert_sets_id(self, repo, clicks_col):
        new_id = ObjectId()
        clicks_col.insert_one.return_value = SimpleNamespace(inserted_id=new_id)
        saved = await repo.insert(_click())
        assert saved.id == new_id
        stored = clicks_col.insert_one.await_args.args[0]
        assert "_id" not in stored
        assert stored["ip_address"] == "198.51.100.7"

    async def test_insert_failure(self, repo, clicks_col):
        clicks_col.insert_one.side_effect = PyMongoError("primary stepped down")
        with pytest.raises(StorageError):
            await repo.insert(_click())

    async def test_first_visit_claimed(self, repo, visitors_col):
        visitors_col.update_one.return_value = SimpleNamespace(upserted_id=ObjectId())
        assert await repo.claim_first_visit(ObjectId(), "198.51.100.7", NOW) is True
        _, kwargs = visitors_col.update_one.await_args
        assert kwargs["upsert"] is True

    async def test_repeat_visit(self, repo, visitors_col):
        visitors_col.update_one.return_value = SimpleNamespace(upserted_id=None)
        assert await repo.claim_first_visit(ObjectId(), "198.51.100.7", NOW) is False

    async def test_concurrent_claim_loses(self, repo, visitors_col):
        visitors_col.update_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        assert await repo.claim_first_visit(ObjectId(), "198.51.100.7", NOW) is False

    async def test_claim_storage_failure(self, repo, visitors_col):
        visitors_col.update_one.side_effect = PyMongoError("timeout")
        with pytest.raises(StorageError):
            await repo.claim_first_visit(ObjectId(), "198.51.100.7", NOW)

    async def test_release(self, repo, visitors_col):
        url_id = ObjectId()
        await repo.release_first_visit(url_id, "198.51.100.7")
        visitors_col.delete_one.assert_awaited_once_with({"url_id": url_id, "ip_address": "198.51.100.7"})


# ── ClickRepository reads ─────────────────────────────────────────────────────


class TestClickReads:
    async def test_distinct_drops_null(self, repo, clicks_col):
        clicks_col.distinct.return_value = ["US", None, "DE"]
        assert await repo.distinct("location.country", ClickQuery()) == ["US", "DE"]

    async def test_count_failure(self, repo, clicks_col):
        clicks_col.count_documents.side_effect = PyMongoError("down")
        with pytest.raises(StorageError):
            await repo.count(ClickQuery())

    async def test_aggregate(self, repo, clicks_col):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[{"_id": None, "total_clicks": 2}])
        clicks_col.aggregate.return_value = cursor
        assert await repo.aggregate([{"$match": {}}]) == [{"_id": None, "total_clicks": 2}]

    async def test_find_projection(self, repo):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[])
        col = MagicMock()
        col.find.return_value = cursor
        repo = ClickRepository(col, AsyncMock())

        await repo.find(ClickQuery(), fields=["clicked_at", "location.country"], limit=5)

        col.find.assert_called_once_with({}, {"clicked_at": 1, "location.country": 1, "_id": 0})
        cursor.limit.assert_called_once_with(5)


# ── UrlRepository ─────────────────────────────────────────────────────────────


class TestUrlRepository:
    async def test_increment_unique(self):
        col = AsyncMock()
        col.find_one_and_update.return_value = {"_id": ObjectId(), "total_clicks": 5, "unique_clicks": 2}
        counters = await UrlRepository(col).increment_counters(ObjectId(), unique=True, clicked_at=NOW)

        assert counters.total_clicks == 5
        update = col.find_one_and_update.await_args.args[1]
        assert update["$inc"] == {"total_clicks": 1, "unique_clicks": 1}
        assert update["$max"] == {"last_clicked_at": NOW}

    async def test_increment_repeat(self):
        col = AsyncMock()
        col.find_one_and_update.return_value = {"_id": ObjectId(), "total_clicks": 6, "unique_clicks": 2}
        await UrlRepository(col).increment_counters(ObjectId(), unique=False, clicked_at=NOW)
        assert col.find_one_and_update.await_args.args[1]["$inc"] == {"total_clicks": 1}

    async def test_increment_missing_url(self):
        col = AsyncMock()
        col.find_one_and_update.return_value = None
        with pytest.raises(StorageError):
            await UrlRepository(col).increment_counters(ObjectId(), unique=False, clicked_at=NOW)

    async def test_find_by_short_code(self):
        col = AsyncMock()
        col.find_one.return_value = {
            "_id": ObjectId(),
            "short_code": "abc123",
            "long_url": "https://example.com",
            "created_at": NOW,
        }
        url = await UrlRepository(col).find_by_short_code("abc123")
        assert url.long_url == "https://example.com"

    async def test_lookup_failure(self):
        col = AsyncMock()
        col.find_one.side_effect = PyMongoError("down")
        with pytest.raises(StorageError):
            await UrlRepository(col).find_by_id(ObjectId())


class TestUserRepository:
    async def test_add_clicks(self):
        col = AsyncMock()
        owner = ObjectId()
        await UserRepository(col).add_clicks(owner, 2)
        col.update_one.assert_awaited_once_with({"_id": owner}, {"$inc": {"stats.total_clicks": 2}})

    async def test_failure(self):
        col = AsyncMock()
        col.update_one.side_effect = PyMongoError("down")
        with pytest.raises(StorageError):
            await UserRepository(col).add_clicks(ObjectId())
