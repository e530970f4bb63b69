"""
Analytics read endpoints.

GET /api/v1/analytics/urls/{url_id}                  full URL report
GET /api/v1/analytics/urls/{url_id}/realtime         live counters of one URL
GET /api/v1/analytics/urls/{url_id}/export           click events as json/csv/xlsx/xml
GET /api/v1/analytics/owners/{owner_id}/dashboard    owner dashboard
GET /api/v1/analytics/platform                       platform report (cached, 204 on lock contention)
GET /api/v1/analytics/realtime                       platform short-window statistics
GET /api/v1/analytics/reports/{report_type}          url | owner | platform report with metadata

Date windows accept ISO 8601 or epoch seconds via start_date / end_date.
"""

from __future__ import annotations

from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from config import AppSettings
from dependencies import get_analytics_service, get_settings
from errors import ValidationError
from schemas.dto.requests.analytics import AnalyticsQuery, ExportQuery, parse_request
from schemas.dto.responses.analytics import (
    GeneratedReport,
    OwnerDashboard,
    RealtimeAnalytics,
    UrlAnalyticsReport,
    UrlRealtimeStats,
)
from services.analytics_service import AnalyticsService
from utils.export_utils import render_export

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


def parse_object_id(value: str, field: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationError(f"invalid {field}", field=field)
    return ObjectId(value)


def analytics_query(
    start_date: Optional[str] = Query(None, description="ISO 8601 or epoch seconds"),
    end_date: Optional[str] = Query(None, description="ISO 8601 or epoch seconds"),
    exclude_bots: bool = Query(True),
    include_realtime: bool = Query(False),
    settings: AppSettings = Depends(get_settings),
) -> AnalyticsQuery:
    return parse_request(
        AnalyticsQuery,
        {
            "start_date": start_date,
            "end_date": end_date,
            "exclude_bots": exclude_bots,
            "include_realtime": include_realtime,
            "default_days": settings.analytics.default_range_days,
        },
    )


@router.get("/urls/{url_id}", response_model=UrlAnalyticsReport)
async def url_analytics(
    url_id: str,
    query: AnalyticsQuery = Depends(analytics_query),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> UrlAnalyticsReport:
    return await analytics.get_url_analytics(
        parse_object_id(url_id, "url_id"),
        query.start,
        query.end,
        exclude_bots=query.exclude_bots,
        include_realtime=query.include_realtime,
    )


@router.get("/urls/{url_id}/realtime", response_model=UrlRealtimeStats)
async def url_realtime(
    url_id: str,
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> UrlRealtimeStats:
    url = await analytics.require_url(parse_object_id(url_id, "url_id"))
    return await analytics.get_url_realtime_stats(url.id, url.short_code)


@router.get("/urls/{url_id}/export")
async def export_url_clicks(
    url_id: str,
    format: str = Query("json"),
    fields: Optional[str] = Query(None, description="comma-separated dotted field names"),
    exclude_bots: bool = Query(True),
    limit: Optional[int] = Query(None),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> Response:
    export = parse_request(
        ExportQuery,
        {"format": format, "fields": fields, "exclude_bots": exclude_bots, "limit": limit},
    )
    rows = await analytics.export_events(
        parse_object_id(url_id, "url_id"),
        export.parsed_fields,
        exclude_bots=export.exclude_bots,
        limit=export.limit,
    )
    file = render_export(rows, export.format, f"clicks-{url_id}")
    return Response(
        content=file.content,
        media_type=file.media_type,
        headers={"Content-Disposition": f'attachment; filename="{file.filename}"'},
    )


@router.get("/owners/{owner_id}/dashboard", response_model=OwnerDashboard)
async def owner_dashboard(
    owner_id: str,
    top_urls: int = Query(10, ge=1, le=100),
    query: AnalyticsQuery = Depends(analytics_query),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> OwnerDashboard:
    return await analytics.get_owner_dashboard(
        parse_object_id(owner_id, "owner_id"), query.start, query.end, top_urls=top_urls
    )


@router.get("/platform")
async def platform_analytics(
    query: AnalyticsQuery = Depends(analytics_query),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> Response:
    report = await analytics.get_platform_analytics(query.start, query.end)
    if report is None:
        # Another worker is computing the report; the client retries
        return Response(status_code=204)
    return JSONResponse(content=report)


@router.get("/realtime", response_model=RealtimeAnalytics)
async def realtime_analytics(
    minutes: Optional[int] = Query(None, ge=1, le=1440),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> RealtimeAnalytics:
    return await analytics.get_realtime_analytics(minutes)


@router.get("/reports/{report_type}", response_model=GeneratedReport)
async def generate_report(
    report_type: str,
    target_id: Optional[str] = Query(None),
    query: AnalyticsQuery = Depends(analytics_query),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> GeneratedReport:
    target = parse_object_id(target_id, "target_id") if target_id else None
    return await analytics.generate_report(report_type, target, query.start, query.end)
