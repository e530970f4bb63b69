"""Async dual-cache (primary + stale + lock) for expensive analytics reports.

  1. Return live data if the primary key exists.
  2. Return stale data if the primary expired; refresh in a background task.
  3. Compute and populate both keys on a full miss.
  4. Return None on lock contention (the route answers 204).

Without Redis every call computes the report directly. Background refresh
errors are logged and swallowed so the request is never affected.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from shared.logging import get_logger, should_sample

log = get_logger(__name__)

QueryFn = Callable[[], Awaitable[Any]]


class DualCache:
    def __init__(
        self,
        redis_client: Optional[aioredis.Redis],
        primary_ttl: int = 300,
        stale_ttl: int = 900,
        lock_ttl: int = 30,
    ) -> None:
        self._redis = redis_client
        self.primary_ttl = primary_ttl
        self.stale_ttl = stale_ttl
        self.lock_ttl = lock_ttl
        self._refresh_tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def _lock(self, key: str) -> bool:
        """Acquire a Redis SET NX EX lock. Returns True if acquired."""
        result = await self._redis.set(key, "1", nx=True, ex=self.lock_ttl)
        return bool(result)

    async def _store(self, base_key: str, data: Any) -> None:
        serialized = json.dumps(data)
        await self._redis.setex(f"{base_key}:live", self.primary_ttl, serialized)
        await self._redis.setex(f"{base_key}:stale", self.stale_ttl, serialized)

    async def get_or_set(self, base_key: str, query_fn: QueryFn) -> Any:
        """Return cached data, or call query_fn and populate the cache.

        query_fn must return JSON-serializable data.
        """
        if self._redis is None:
            return await query_fn()

        lock_key = f"{base_key}:lock"

        raw = await self._redis.get(f"{base_key}:live")
        if raw:
            if should_sample("analytics_query"):
                log.debug("report_cache_hit", base_key=base_key)
            return json.loads(raw)

        stale = await self._redis.get(f"{base_key}:stale")
        if stale:
            if await self._lock(lock_key):
                task = asyncio.create_task(self._refresh(base_key, query_fn))
                self._refresh_tasks.add(task)
                task.add_done_callback(self._refresh_tasks.discard)
            return json.loads(stale)

        if await self._lock(lock_key):
            try:
                data = await query_fn()
            except Exception:
                await self._redis.delete(lock_key)
                raise
            try:
                await self._store(base_key, data)
                await self._redis.delete(lock_key)
            except RedisError as e:
                log.warning(
                    "report_cache_store_failed",
                    base_key=base_key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return data

        log.debug("report_cache_lock_contention", base_key=base_key)
        return None

    async def _refresh(self, base_key: str, query_fn: QueryFn) -> None:
        """Background refresh; errors are logged and swallowed."""
        try:
            await self._store(base_key, await query_fn())
        except Exception as e:
            log.error(
                "report_cache_refresh_failed",
                base_key=base_key,
                error=str(e),
                error_type=type(e).__name__,
            )
