"""
Response DTOs for the analytics endpoints and the realtime payloads.

Report blocks are plain pydantic models; routes return them through
``model_dump(mode="json")`` so datetimes and ObjectIds become strings.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.models.click import ClickEventDoc


class DateRange(BaseModel):
    start: datetime
    end: datetime


class Overview(BaseModel):
    """Totals for one match window. All zero for an empty window."""

    total_clicks: int = 0
    unique_clicks: int = 0
    bot_clicks: int = 0
    unique_visitors: int = 0
    average_load_time: float = 0.0


class CountryCount(BaseModel):
    country: str
    country_name: Optional[str] = None
    count: int


class DimensionCount(BaseModel):
    value: str
    count: int


class ReferrerCount(BaseModel):
    referrer: str
    domain: str
    type: str
    count: int


class HourlyBucket(BaseModel):
    hour: int = Field(ge=0, le=23)
    count: int
    unique_visitors: int
    unique_ips: int


class DailyBucket(BaseModel):
    date: str  # YYYY-MM-DD
    count: int
    unique_visitors: int
    unique_registered_visitors: int
    unique_countries: int
    unique_device_types: int
    bot_clicks: int
    human_clicks: int


class AnalyticsReport(BaseModel):
    url_id: Optional[str] = None
    date_range: DateRange
    overview: Overview = Field(default_factory=Overview)
    by_country: list[CountryCount] = Field(default_factory=list)
    by_device: list[DimensionCount] = Field(default_factory=list)
    by_browser: list[DimensionCount] = Field(default_factory=list)
    by_referrer: list[ReferrerCount] = Field(default_factory=list)
    clicks_by_hour: list[HourlyBucket] = Field(default_factory=list)
    clicks_by_day: list[DailyBucket] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    clicks_per_day: float = 0.0
    conversion_rate: float = 0.0
    engagement_score: int = 0
    peak_hour: Optional[int] = None
    trend_direction: str = "stable"


# ── Realtime ─────────────────────────────────────────────────────────────────


class RealtimeStatistics(BaseModel):
    time_window_minutes: int
    recent_clicks: int = 0
    active_urls: int = 0
    active_countries: int = 0
    avg_clicks_per_minute: float = 0.0


class ActiveUrl(BaseModel):
    url_id: str
    short_code: Optional[str] = None
    short_url: Optional[str] = None
    title: Optional[str] = None
    click_count: int = 0
    unique_visitors: int = 0
    last_click: Optional[datetime] = None


class RealtimeAnalytics(BaseModel):
    """Platform-wide live view: statistics plus the most active links."""

    time_window: str
    statistics: RealtimeStatistics
    active_urls: list[ActiveUrl] = Field(default_factory=list)
    live_visitors: int = 0
    last_updated: datetime


class UrlRealtimeStats(BaseModel):
    short_code: Optional[str] = None
    clicks_last_5_minutes: int = 0
    clicks_last_hour: int = 0
    unique_visitors_last_hour: int = 0
    active_countries: list[str] = Field(default_factory=list)
    last_updated: datetime


# ── Composite reports ────────────────────────────────────────────────────────


class UrlSummary(BaseModel):
    id: str
    short_code: str
    long_url: str
    title: Optional[str] = None
    created_at: datetime
    total_clicks: int = 0
    unique_clicks: int = 0
    last_clicked_at: Optional[datetime] = None


class PublicUrlStats(BaseModel):
    """Public counters of one short link; no per-visitor data."""

    short_code: str
    short_url: str
    title: str = "Untitled"
    domain: str
    created_at: datetime
    total_clicks: int = 0
    is_active: bool = True


class GeographicBlock(BaseModel):
    by_country: list[CountryCount] = Field(default_factory=list)
    top_countries: list[CountryCount] = Field(default_factory=list)


class TechnologyBlock(BaseModel):
    by_device: list[DimensionCount] = Field(default_factory=list)
    by_browser: list[DimensionCount] = Field(default_factory=list)
    top_browsers: list[DimensionCount] = Field(default_factory=list)


class TrafficBlock(BaseModel):
    by_referrer: list[ReferrerCount] = Field(default_factory=list)
    clicks_by_hour: list[HourlyBucket] = Field(default_factory=list)
    clicks_by_day: list[DailyBucket] = Field(default_factory=list)


class UrlAnalyticsReport(BaseModel):
    url: UrlSummary
    date_range: DateRange
    overview: Overview
    geographic: GeographicBlock
    technology: TechnologyBlock
    traffic: TrafficBlock
    performance: PerformanceMetrics
    realtime: Optional[UrlRealtimeStats] = None


class TrendPoint(BaseModel):
    date: str
    clicks: int
    unique_visitors: int


class TopUrl(BaseModel):
    url_id: str
    short_code: str
    title: Optional[str] = None
    total_clicks: int = 0
    unique_clicks: int = 0
    last_clicked_at: Optional[datetime] = None


class RecentActivity(BaseModel):
    clicked_at: datetime
    short_code: str
    title: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    device_type: Optional[str] = None
    browser: Optional[str] = None
    referrer: Optional[str] = None


class OwnerDashboard(BaseModel):
    owner_id: str
    date_range: DateRange
    overview: Overview = Field(default_factory=Overview)
    trends: list[TrendPoint] = Field(default_factory=list)
    top_countries: list[CountryCount] = Field(default_factory=list)
    top_urls: list[TopUrl] = Field(default_factory=list)
    recent_activity: list[RecentActivity] = Field(default_factory=list)


class PlatformOverview(BaseModel):
    total_clicks: int = 0
    unique_urls: int = 0
    unique_visitors: int = 0


class PlatformPerformance(BaseModel):
    window_hours: int = 24
    total_clicks: int = 0
    unique_visitors: int = 0
    clicks_per_hour: float = 0.0
    average_load_time: float = 0.0


class PlatformReport(BaseModel):
    date_range: DateRange
    overview: PlatformOverview
    trends: list[TrendPoint] = Field(default_factory=list)
    performance: PlatformPerformance
    realtime: RealtimeStatistics


class ReportMetadata(BaseModel):
    report_type: str
    target_id: Optional[str] = None
    generated_at: datetime
    date_range: DateRange


class GeneratedReport(BaseModel):
    metadata: ReportMetadata
    data: dict[str, Any]


# ── Ingestion / maintenance results ──────────────────────────────────────────


class LiveCounters(BaseModel):
    total_clicks: int
    unique_clicks: int
    is_unique: bool


class RecordClickResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    click: ClickEventDoc
    redirect_url: str
    counters: LiveCounters


class RetentionResult(BaseModel):
    dry_run: bool
    cutoff: datetime
    deleted_count: int = 0
    would_delete_count: Optional[int] = None
    batches: int = 0
    visitors_purged: int = 0
