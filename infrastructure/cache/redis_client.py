"""Async Redis connection factory.

Returns an async redis.Redis client, or None if Redis is not configured or
unreachable. Redis only backs the report cache, so every caller handles None.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from shared.logging import get_logger

log = get_logger(__name__)


async def create_redis_client(redis_uri: Optional[str]) -> Optional[aioredis.Redis]:
    """Connect to Redis and return a client, or None on failure."""
    if not redis_uri:
        log.info("redis_not_configured")
        return None
    client: aioredis.Redis = aioredis.from_url(redis_uri, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        log.warning("redis_connection_failed", error=str(e), error_type=type(e).__name__)
        await client.aclose()
        return None
    log.info("redis_connected", uri=redis_uri.split("@")[-1])  # mask credentials
    return client
