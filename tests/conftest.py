"""
Shared test configuration.

- dotenv loading is disabled so pydantic-settings never reads a real .env;
  tests control config through monkeypatch.setenv().
- FakeClickStore / FakeUrlStore are in-memory stand-ins for the Mongo
  repositories. They implement the store protocols, including the window,
  bot and projection semantics of ClickQuery, but not aggregation pipelines:
  aggregate() records the pipeline and returns whatever aggregate_results
  yields for it.
- build_test_app() wires the real services over those stores for route tests.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi import APIRouter, FastAPI

from config import AppSettings
from errors import StorageError, register_error_handlers
from infrastructure.cache.dual_cache import DualCache
from infrastructure.geoip import GeoIPService
from repositories.click_repository import ClickQuery
from schemas.models.click import ClickEventDoc
from schemas.models.url import UrlCounters, UrlDoc
from services.analytics_service import AnalyticsService
from services.click_service import ClickIngestionService
from services.enrichment import ClickEnricher
from services.realtime import RealtimeBroadcaster
from shared.datetime_utils import ensure_utc, utc_now

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/")


@pytest.fixture(autouse=True)
def disable_dotenv_loading(monkeypatch):
    """Prevent pydantic-settings from loading .env files in all tests."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})


# ── Fake stores ───────────────────────────────────────────────────────────────


def dig(doc: dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def matches(doc: dict[str, Any], query: ClickQuery) -> bool:
    if query.url_ids is not None and doc["url_id"] not in query.url_ids:
        return False
    clicked_at = ensure_utc(doc["clicked_at"])
    if query.start is not None and clicked_at < ensure_utc(query.start):
        return False
    if query.end is not None and clicked_at > ensure_utc(query.end):
        return False
    if query.exclude_bots and doc.get("is_bot") is True:
        return False
    return True


def project(doc: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for field in fields:
        value = dig(doc, field)
        if value is None:
            continue
        target = row
        *parents, leaf = field.split(".")
        for parent in parents:
            target = target.setdefault(parent, {})
        target[leaf] = value
    return row


class FakeClickStore:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.visitors: dict[tuple[ObjectId, str], dict[str, datetime]] = {}
        self.pipelines: list[list[dict[str, Any]]] = []
        self.aggregate_results: Callable[[list[dict[str, Any]]], list[dict[str, Any]]] = (
            lambda pipeline: []
        )
        self.fail_insert = False
        self.released: list[tuple[ObjectId, str]] = []
        self.delete_calls: list[int] = []

    def add_event(self, **fields: Any) -> dict[str, Any]:
        doc = {
            "_id": ObjectId(),
            "ip_address": "203.0.113.5",
            "is_bot": False,
            "is_unique": False,
            "clicked_at": utc_now(),
            "device": {"type": "desktop"},
        }
        doc.update(fields)
        self.events.append(doc)
        return doc

    async def insert(self, click: ClickEventDoc) -> ClickEventDoc:
        if self.fail_insert:
            raise StorageError("failed to record click event")
        doc = click.to_mongo()
        doc["_id"] = ObjectId()
        self.events.append(doc)
        return click.model_copy(update={"id": doc["_id"]})

    async def claim_first_visit(self, url_id: ObjectId, ip_address: str, seen_at: datetime) -> bool:
        marker = self.visitors.get((url_id, ip_address))
        if marker is None:
            self.visitors[(url_id, ip_address)] = {"first_seen_at": seen_at, "last_seen_at": seen_at}
            return True
        marker["last_seen_at"] = max(marker["last_seen_at"], seen_at)
        return False

    async def release_first_visit(self, url_id: ObjectId, ip_address: str) -> None:
        self.released.append((url_id, ip_address))
        self.visitors.pop((url_id, ip_address), None)

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.pipelines.append(pipeline)
        return self.aggregate_results(pipeline)

    async def count(self, query: ClickQuery) -> int:
        return sum(1 for doc in self.events if matches(doc, query))

    async def distinct(self, field: str, query: ClickQuery) -> list[Any]:
        values: list[Any] = []
        for doc in self.events:
            if not matches(doc, query):
                continue
            value = dig(doc, field)
            if value is not None and value not in values:
                values.append(value)
        return values

    async def find(
        self,
        query: ClickQuery,
        *,
        fields: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        docs = sorted(
            (doc for doc in self.events if matches(doc, query)),
            key=lambda doc: ensure_utc(doc["clicked_at"]),
            reverse=True,
        )
        if limit:
            docs = docs[:limit]
        if fields:
            return [project(doc, fields) for doc in docs]
        return [dict(doc) for doc in docs]

    async def count_older_than(self, cutoff: datetime) -> int:
        return sum(1 for doc in self.events if ensure_utc(doc["clicked_at"]) < cutoff)

    async def delete_older_than(self, cutoff: datetime, limit: int) -> int:
        self.delete_calls.append(limit)
        old = sorted(
            (doc for doc in self.events if ensure_utc(doc["clicked_at"]) < cutoff),
            key=lambda doc: ensure_utc(doc["clicked_at"]),
        )[:limit]
        ids = {doc["_id"] for doc in old}
        self.events = [doc for doc in self.events if doc["_id"] not in ids]
        return len(ids)

    async def purge_visitors_older_than(self, cutoff: datetime) -> int:
        stale = [key for key, marker in self.visitors.items() if marker["last_seen_at"] < cutoff]
        for key in stale:
            del self.visitors[key]
        return len(stale)


class FakeUrlStore:
    def __init__(self) -> None:
        self.urls: dict[ObjectId, UrlDoc] = {}

    def add(self, **fields: Any) -> UrlDoc:
        data = {
            "_id": ObjectId(),
            "short_code": "abc123",
            "long_url": "https://example.com/landing",
            "created_at": utc_now() - timedelta(days=10),
        }
        data.update(fields)
        url = UrlDoc.model_validate(data)
        self.urls[url.id] = url
        return url

    async def find_by_id(self, url_id: ObjectId) -> Optional[UrlDoc]:
        return self.urls.get(url_id)

    async def find_by_short_code(self, short_code: str) -> Optional[UrlDoc]:
        return next((u for u in self.urls.values() if u.short_code == short_code), None)

    async def find_by_ids(self, url_ids: Iterable[ObjectId]) -> list[UrlDoc]:
        return [self.urls[i] for i in url_ids if i in self.urls]

    async def find_ids_by_owner(self, owner_id: ObjectId, active_only: bool = True) -> list[ObjectId]:
        return [
            u.id
            for u in self.urls.values()
            if u.owner_id == owner_id and (u.is_active or not active_only)
        ]

    async def find_top_by_owner(self, owner_id: ObjectId, limit: int = 10) -> list[UrlDoc]:
        owned = [u for u in self.urls.values() if u.owner_id == owner_id and u.is_active]
        return sorted(owned, key=lambda u: u.total_clicks, reverse=True)[:limit]

    async def find_recently_active(self, since: datetime, limit: int = 5) -> list[UrlDoc]:
        recent = [
            u
            for u in self.urls.values()
            if u.last_clicked_at is not None and ensure_utc(u.last_clicked_at) >= since
        ]
        return sorted(recent, key=lambda u: u.last_clicked_at, reverse=True)[:limit]

    async def increment_counters(
        self, url_id: ObjectId, *, unique: bool, clicked_at: datetime
    ) -> UrlCounters:
        url = self.urls.get(url_id)
        if url is None:
            raise StorageError("url disappeared before its counters were updated")
        url.total_clicks += 1
        if unique:
            url.unique_clicks += 1
        if url.last_clicked_at is None or ensure_utc(url.last_clicked_at) < clicked_at:
            url.last_clicked_at = clicked_at
        return UrlCounters(
            total_clicks=url.total_clicks,
            unique_clicks=url.unique_clicks,
            last_clicked_at=url.last_clicked_at,
        )


class FakeOwnerStats:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[ObjectId, int]] = []
        self.fail = fail

    async def add_clicks(self, owner_id: ObjectId, count: int = 1) -> None:
        if self.fail:
            raise StorageError("failed to update owner statistics")
        self.calls.append((owner_id, count))


class FakeGeoLocator:
    def __init__(self, location=None, error: Optional[Exception] = None) -> None:
        self.location = location
        self.error = error
        self.lookups: list[str] = []

    async def lookup(self, ip_address: str):
        self.lookups.append(ip_address)
        if self.error is not None:
            raise self.error
        return self.location


@pytest.fixture
def click_store() -> FakeClickStore:
    return FakeClickStore()


@pytest.fixture
def url_store() -> FakeUrlStore:
    return FakeUrlStore()


@pytest.fixture
def owner_stats() -> FakeOwnerStats:
    return FakeOwnerStats()


@pytest.fixture
def geolocator() -> FakeGeoLocator:
    return FakeGeoLocator()


# ── App builder for route tests ───────────────────────────────────────────────


def build_test_app(
    click_store: FakeClickStore,
    url_store: FakeUrlStore,
    *routers: APIRouter,
    geolocator: Optional[FakeGeoLocator] = None,
    redis=None,
) -> FastAPI:
    """FastAPI app with the real services wired over the in-memory stores.

    State is set directly instead of through the production lifespan, so no
    network connection is ever opened.
    """
    settings = AppSettings()
    analytics = AnalyticsService(
        click_store,
        url_store,
        settings.analytics,
        DualCache(redis),
    )

    app = FastAPI()
    register_error_handlers(app)
    app.state.settings = settings
    app.state.db = MagicMock()
    app.state.db.client.admin.command = AsyncMock(return_value={"ok": 1})
    app.state.redis = redis
    app.state.url_repository = url_store
    app.state.geoip = GeoIPService("nonexistent.mmdb", enabled=False)
    app.state.ingestion_service = ClickIngestionService(
        click_store, url_store, ClickEnricher(geolocator or FakeGeoLocator())
    )
    app.state.analytics_service = analytics
    app.state.broadcaster = RealtimeBroadcaster(analytics, send_timeout=0.5)
    for router in routers:
        app.include_router(router)
    return app
