"""
GET /health: readiness of the click pipeline's backing services.

- mongodb: ping; a failure is "unhealthy" (503) because no click can be
  recorded or counted without it.
- redis: ping, or "not_configured". A failing Redis is "degraded": only the
  platform report cache is lost.
- geoip: state of the City database. "unavailable" is "degraded": clicks are
  still recorded, without a location.

The body also reports how many realtime topics and subscribers are open.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from schemas.dto.responses.common import HealthResponse
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


async def _check_mongodb(request: Request) -> str:
    try:
        await request.app.state.db.client.admin.command("ping")
        return "ok"
    except Exception as e:
        log.error("health_mongodb_failed", error=str(e), error_type=type(e).__name__)
        return "error"


async def _check_redis(request: Request) -> str:
    redis = request.app.state.redis
    if redis is None:
        return "not_configured"
    try:
        await redis.ping()
        return "ok"
    except Exception as e:
        log.warning("health_redis_failed", error=str(e), error_type=type(e).__name__)
        return "error"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> JSONResponse:
    checks = {
        "mongodb": await _check_mongodb(request),
        "redis": await _check_redis(request),
        "geoip": request.app.state.geoip.status,
    }

    if checks["mongodb"] != "ok":
        overall = "unhealthy"
    elif checks["redis"] == "error" or checks["geoip"] == "unavailable":
        overall = "degraded"
    else:
        overall = "healthy"

    body = HealthResponse(
        status=overall,
        checks=checks,
        realtime=request.app.state.broadcaster.stats(),
    )
    return JSONResponse(
        status_code=503 if overall == "unhealthy" else 200,
        content=body.model_dump(),
    )
