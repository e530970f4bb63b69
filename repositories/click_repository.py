"""
MongoDB persistence for click events and first-visit markers.

Click events live in the `clicks` collection and are append-only; the only
delete path is the retention sweep. First-visit markers live in
`click_visitors`, one document per (url_id, ip_address) guarded by a unique
index, and decide whether a click is unique.

Every PyMongoError is logged and re-raised as StorageError.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import StorageError
from schemas.models.click import ClickEventDoc
from shared.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ClickQuery:
    """Match criteria shared by every read over the click events.

    ``url_ids=None`` means every URL; an empty tuple matches nothing.
    The window is inclusive at both ends.
    """

    url_ids: Optional[tuple[ObjectId, ...]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    exclude_bots: bool = False

    @classmethod
    def for_urls(
        cls,
        url_ids: Optional[Iterable[ObjectId]],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        exclude_bots: bool = False,
    ) -> "ClickQuery":
        ids = None if url_ids is None else tuple(url_ids)
        return cls(url_ids=ids, start=start, end=end, exclude_bots=exclude_bots)

    def with_window(self, start: Optional[datetime], end: Optional[datetime] = None) -> "ClickQuery":
        return replace(self, start=start, end=end)

    def to_filter(self) -> dict[str, Any]:
        query: dict[str, Any] = {}
        if self.url_ids is not None:
            if len(self.url_ids) == 1:
                query["url_id"] = self.url_ids[0]
            else:
                query["url_id"] = {"$in": list(self.url_ids)}
        window: dict[str, datetime] = {}
        if self.start is not None:
            window["$gte"] = self.start
        if self.end is not None:
            window["$lte"] = self.end
        if window:
            query["clicked_at"] = window
        if self.exclude_bots:
            query["is_bot"] = {"$ne": True}
        return query


class ClickRepository:
    def __init__(self, clicks: AsyncCollection, visitors: AsyncCollection) -> None:
        self._clicks = clicks
        self._visitors = visitors

    async def ensure_indexes(self) -> None:
        try:
            await self._clicks.create_index([("url_id", ASCENDING), ("clicked_at", DESCENDING)])
            await self._clicks.create_index([("clicked_at", DESCENDING)])
            await self._clicks.create_index([("url_id", ASCENDING), ("ip_address", ASCENDING)])
            await self._clicks.create_index([("location.country", ASCENDING), ("clicked_at", DESCENDING)])
            await self._visitors.create_index(
                [("url_id", ASCENDING), ("ip_address", ASCENDING)], unique=True
            )
            await self._visitors.create_index([("last_seen_at", ASCENDING)])
        except PyMongoError as e:
            log.error("click_index_creation_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("could not create click indexes") from e

    # ── Writes ───────────────────────────────────────────────────────────────

    async def insert(self, click: ClickEventDoc) -> ClickEventDoc:
        try:
            result = await self._clicks.insert_one(click.to_mongo())
        except PyMongoError as e:
            log.error(
                "click_insert_failed",
                url_id=str(click.url_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError("failed to record click event") from e
        return click.model_copy(update={"id": result.inserted_id})

    async def claim_first_visit(
        self, url_id: ObjectId, ip_address: str, seen_at: datetime
    ) -> bool:
        """Record that *ip_address* visited *url_id*; True only for the first visit.

        The upsert either creates the marker (first visit) or bumps its
        last_seen_at, atomically.
        """
        try:
            result = await self._visitors.update_one(
                {"url_id": url_id, "ip_address": ip_address},
                {
                    "$setOnInsert": {"first_seen_at": seen_at},
                    "$max": {"last_seen_at": seen_at},
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # A concurrent upsert for the same pair created the marker first
            return False
        except PyMongoError as e:
            log.error(
                "visitor_claim_failed",
                url_id=str(url_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError("failed to check click uniqueness") from e
        return result.upserted_id is not None

    async def release_first_visit(self, url_id: ObjectId, ip_address: str) -> None:
        try:
            await self._visitors.delete_one({"url_id": url_id, "ip_address": ip_address})
        except PyMongoError as e:
            raise StorageError("failed to release visitor marker") from e

    # ── Reads ────────────────────────────────────────────────────────────────

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        try:
            cursor = await self._clicks.aggregate(pipeline)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            log.error("click_aggregation_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("analytics query failed") from e

    async def count(self, query: ClickQuery) -> int:
        try:
            return await self._clicks.count_documents(query.to_filter())
        except PyMongoError as e:
            log.error("click_count_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("analytics query failed") from e

    async def distinct(self, field: str, query: ClickQuery) -> list[Any]:
        try:
            values = await self._clicks.distinct(field, query.to_filter())
        except PyMongoError as e:
            log.error("click_distinct_failed", field=field, error=str(e), error_type=type(e).__name__)
            raise StorageError("analytics query failed") from e
        return [value for value in values if value is not None]

    async def find(
        self,
        query: ClickQuery,
        *,
        fields: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Matching events, newest first, optionally projected to dotted *fields*."""
        projection = None
        if fields:
            projection = {field: 1 for field in fields}
            projection["_id"] = 0
        try:
            cursor = self._clicks.find(query.to_filter(), projection).sort("clicked_at", DESCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            log.error("click_find_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("click lookup failed") from e

    # ── Retention ────────────────────────────────────────────────────────────

    async def count_older_than(self, cutoff: datetime) -> int:
        try:
            return await self._clicks.count_documents({"clicked_at": {"$lt": cutoff}})
        except PyMongoError as e:
            raise StorageError("retention count failed") from e

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        """Delete up to *limit* of the oldest events before *cutoff*."""
        try:
            cursor = (
                self._clicks.find({"clicked_at": {"$lt": cutoff}}, {"_id": 1})
                .sort("clicked_at", ASCENDING)
                .limit(limit)
            )
            ids = [doc["_id"] async for doc in cursor]
            if not ids:
                return 0
            result = await self._clicks.delete_many({"_id": {"$in": ids}})
        except PyMongoError as e:
            log.error("retention_batch_failed", error=str(e), error_type=type(e).__name__)
            raise StorageError("retention delete failed") from e
        return result.deleted_count

    async def purge_visitors_older_than(self, cutoff: datetime) -> int:
        try:
            result = await self._visitors.delete_many({"last_seen_at": {"$lt": cutoff}})
        except PyMongoError as e:
            raise StorageError("visitor marker purge failed") from e
        return result.deleted_count
