"""
FastAPI dependency providers.

Every service is built once in the app lifespan and stored on app.state;
these providers hand them to route handlers through Depends(), so tests can
swap any of them with app.dependency_overrides.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.requests import HTTPConnection

from config import AppSettings
from repositories.url_repository import UrlRepository
from services.analytics_service import AnalyticsService
from services.click_service import ClickIngestionService
from services.realtime import RealtimeBroadcaster


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


async def get_url_repository(request: Request) -> UrlRepository:
    return request.app.state.url_repository


async def get_ingestion_service(request: Request) -> ClickIngestionService:
    return request.app.state.ingestion_service


async def get_analytics_service(request: Request) -> AnalyticsService:
    return request.app.state.analytics_service


def get_broadcaster(connection: HTTPConnection) -> RealtimeBroadcaster:
    """Works for both HTTP requests and WebSocket connections via app.state."""
    return connection.app.state.broadcaster
