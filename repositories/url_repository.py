"""
MongoDB access to the URL collection.

URL records are created and managed elsewhere. This repository only reads
them and applies the counter increment; the increment is a single
find_one_and_update so concurrent clicks never lose an update.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from errors import StorageError
from schemas.models.url import UrlCounters, UrlDoc
from shared.logging import get_logger

log = get_logger(__name__)


class UrlRepository:
    def __init__(self, collection: AsyncCollection) -> None:
        self._col = collection

    async def ensure_indexes(self) -> None:
        try:
            await self._col.create_index("short_code")
            await self._col.create_index([("owner_id", 1), ("total_clicks", DESCENDING)])
            await self._col.create_index([("last_clicked_at", DESCENDING)])
        except PyMongoError as e:
            log.error("url_index_creation_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("could not create url indexes") from e

    async def find_by_id(self, url_id: ObjectId) -> Optional[UrlDoc]:
        try:
            doc = await self._col.find_one({"_id": url_id})
        except PyMongoError as e:
            log.error("url_lookup_failed", url_id=str(url_id), error=str(e), error_type=type(e).__name__)
            raise StorageError("url lookup failed") from e
        return UrlDoc.from_mongo(doc)

    async def find_by_short_code(self, short_code: str) -> Optional[UrlDoc]:
        try:
            doc = await self._col.find_one({"short_code": short_code})
        except PyMongoError as e:
            log.error("url_lookup_failed", short_code=short_code, error=str(e), error_type=type(e).__name__)
            raise StorageError("url lookup failed") from e
        return UrlDoc.from_mongo(doc)

    async def find_by_ids(self, url_ids: Iterable[ObjectId]) -> list[UrlDoc]:
        ids = list(url_ids)
        if not ids:
            return []
        return await self._find({"_id": {"$in": ids}})

    async def find_ids_by_owner(self, owner_id: ObjectId, active_only: bool = True) -> list[ObjectId]:
        query: dict = {"owner_id": owner_id}
        if active_only:
            query["is_active"] = True
        try:
            cursor = self._col.find(query, {"_id": 1})
            return [doc["_id"] async for doc in cursor]
        except PyMongoError as e:
            raise StorageError("url lookup failed") from e

    async def find_top_by_owner(self, owner_id: ObjectId, limit: int = 10) -> list[UrlDoc]:
        return await self._find(
            {"owner_id": owner_id, "is_active": True},
            sort=("total_clicks", DESCENDING),
            limit=limit,
        )

    async def find_recently_active(self, since: datetime, limit: int = 5) -> list[UrlDoc]:
        return await self._find(
            {"last_clicked_at": {"$gte": since}},
            sort=("last_clicked_at", DESCENDING),
            limit=limit,
        )

    async def increment_counters(
        self, url_id: ObjectId, *, unique: bool, clicked_at: datetime
    ) -> UrlCounters:
        """Atomically bump the click counters; returns the post-increment values."""
        inc = {"total_clicks": 1}
        if unique:
            inc["unique_clicks"] = 1
        try:
            doc = await self._col.find_one_and_update(
                {"_id": url_id},
                {"$inc": inc, "$max": {"last_clicked_at": clicked_at}},
                projection={"total_clicks": 1, "unique_clicks": 1, "last_clicked_at": 1},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            log.error("url_counter_update_failed", url_id=str(url_id), error=str(e), error_type=type(e).__name__)
            raise StorageError("failed to update click counters") from e
        if doc is None:
            raise StorageError("url disappeared before its counters were updated")
        return UrlCounters.from_mongo(doc)

    async def _find(
        self,
        query: dict,
        sort: Optional[tuple[str, int]] = None,
        limit: Optional[int] = None,
    ) -> list[UrlDoc]:
        try:
            cursor = self._col.find(query)
            if sort:
                cursor = cursor.sort(*sort)
            if limit:
                cursor = cursor.limit(limit)
            return [UrlDoc.from_mongo(doc) async for doc in cursor]
        except PyMongoError as e:
            log.error("url_query_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("url lookup failed") from e
