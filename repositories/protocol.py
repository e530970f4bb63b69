"""Store protocols: services depend on these, not on the Mongo repositories."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from bson import ObjectId

from repositories.click_repository import ClickQuery
from schemas.models.click import ClickEventDoc
from schemas.models.url import UrlCounters, UrlDoc


class ClickStore(Protocol):
    async def insert(self, click: ClickEventDoc) -> ClickEventDoc: ...

    async def claim_first_visit(
        self, url_id: ObjectId, ip_address: str, seen_at: datetime
    ) -> bool: ...

    async def release_first_visit(self, url_id: ObjectId, ip_address: str) -> None: ...

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    async def count(self, query: ClickQuery) -> int: ...

    async def distinct(self, field: str, query: ClickQuery) -> list[Any]: ...

    async def find(
        self,
        query: ClickQuery,
        *,
        fields: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]: ...

    async def count_older_than(self, cutoff: datetime) -> int: ...

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int: ...

    async def purge_visitors_older_than(self, cutoff: datetime) -> int: ...


class UrlStore(Protocol):
    async def find_by_id(self, url_id: ObjectId) -> Optional[UrlDoc]: ...

    async def find_by_short_code(self, short_code: str) -> Optional[UrlDoc]: ...

    async def find_by_ids(self, url_ids: Iterable[ObjectId]) -> list[UrlDoc]: ...

    async def find_ids_by_owner(
        self, owner_id: ObjectId, active_only: bool = True
    ) -> list[ObjectId]: ...

    async def find_top_by_owner(self, owner_id: ObjectId, limit: int = 10) -> list[UrlDoc]: ...

    async def find_recently_active(self, since: datetime, limit: int = 5) -> list[UrlDoc]: ...

    async def increment_counters(
        self, url_id: ObjectId, *, unique: bool, clicked_at: datetime
    ) -> UrlCounters: ...


class OwnerStatsSink(Protocol):
    async def add_clicks(self, owner_id: ObjectId, count: int = 1) -> None: ...
