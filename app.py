"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.cache.dual_cache import DualCache
from infrastructure.cache.redis_client import create_redis_client
from infrastructure.geoip import GeoIPService
from repositories.click_repository import ClickRepository
from repositories.url_repository import UrlRepository
from repositories.user_repository import UserRepository
from routes.analytics_routes import router as analytics_router
from routes.health_routes import router as health_router
from routes.realtime_routes import router as realtime_router
from routes.redirect_routes import router as redirect_router
from services.analytics_service import AnalyticsService
from services.click_service import ClickIngestionService
from services.enrichment import ClickEnricher
from services.realtime import RealtimeBroadcaster
from services.retention_service import RetentionService
from shared.logging import get_logger
from workers.retention_worker import RetentionWorker

log = get_logger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry.sentry_profile_sample_rate,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        db_settings = settings.db
        analytics_settings = settings.analytics

        mongo_client: AsyncMongoClient = AsyncMongoClient(db_settings.mongodb_uri)
        db = mongo_client[db_settings.db_name]
        app.state.mongo_client = mongo_client
        app.state.db = db
        app.state.settings = settings

        # Redis is optional; it only backs the platform report cache
        redis_client = await create_redis_client(settings.redis.redis_uri)
        app.state.redis = redis_client

        clicks = ClickRepository(
            db[db_settings.clicks_collection], db[db_settings.visitors_collection]
        )
        urls = UrlRepository(db[db_settings.urls_collection])
        users = UserRepository(db[db_settings.users_collection])
        await clicks.ensure_indexes()
        await urls.ensure_indexes()
        app.state.url_repository = urls

        geoip = GeoIPService(
            settings.geoip_city_db,
            settings.geoip_asn_db,
            enabled=analytics_settings.geolocation_enabled,
        )
        app.state.geoip = geoip

        app.state.ingestion_service = ClickIngestionService(
            clicks, urls, ClickEnricher(geoip), owner_stats=users
        )
        analytics = AnalyticsService(
            clicks,
            urls,
            analytics_settings,
            cache=DualCache(
                redis_client,
                primary_ttl=settings.redis.report_cache_primary_ttl,
                stale_ttl=settings.redis.report_cache_stale_ttl,
            ),
        )
        app.state.analytics_service = analytics
        broadcaster = RealtimeBroadcaster(
            analytics, send_timeout=analytics_settings.broadcast_send_timeout
        )
        app.state.broadcaster = broadcaster

        retention = RetentionService(
            clicks, pause_seconds=analytics_settings.retention_pause_seconds
        )
        app.state.retention_service = retention
        retention_worker = None
        if analytics_settings.retention_enabled:
            retention_worker = RetentionWorker(
                retention,
                timedelta(days=analytics_settings.retention_days),
                batch_size=analytics_settings.retention_batch_size,
                interval_seconds=analytics_settings.retention_interval_seconds,
            )
            await retention_worker.start()
        app.state.retention_worker = retention_worker

        log.info(
            "app_started",
            env=settings.env,
            db_name=db_settings.db_name,
            redis=redis_client is not None,
            retention_enabled=retention_worker is not None,
        )

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        if retention_worker is not None:
            await retention_worker.stop()
        await broadcaster.shutdown()
        geoip.close()
        if redis_client is not None:
            await redis_client.aclose()
        await mongo_client.close()
        log.info("app_stopped")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    # all origins allowed with credentials support.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(analytics_router)
    app.include_router(realtime_router)
    # Catch-all /{short_code}; must stay last
    app.include_router(redirect_router)

    return app
