"""
Analytics aggregation engine.

Every report is assembled from independent facet strategies
(utils/aggregation_strategies.py) that run concurrently against the same
match filter. Short-window (realtime) statistics use plain count/distinct
queries so they stay cheap enough to recompute after every click.

Reads only: nothing here mutates click events or counters.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from bson import ObjectId

from config import AnalyticsSettings
from errors import NotFoundError, ValidationError
from infrastructure.cache.dual_cache import DualCache
from repositories.click_repository import ClickQuery
from repositories.protocol import ClickStore, UrlStore
from schemas.dto.requests.analytics import REPORT_TYPES
from schemas.dto.responses.analytics import (
    ActiveUrl,
    AnalyticsReport,
    DateRange,
    GeneratedReport,
    GeographicBlock,
    OwnerDashboard,
    PlatformPerformance,
    PlatformReport,
    PublicUrlStats,
    RealtimeAnalytics,
    RealtimeStatistics,
    RecentActivity,
    ReportMetadata,
    TechnologyBlock,
    TopUrl,
    TrafficBlock,
    UrlAnalyticsReport,
    UrlRealtimeStats,
    UrlSummary,
)
from schemas.models.url import UrlDoc
from shared.datetime_utils import utc_now
from shared.logging import get_logger, should_sample
from shared.referrers import extract_domain
from utils.aggregation_strategies import (
    ActiveUrlAggregationStrategy,
    AggregationStrategy,
    AggregationStrategyFactory,
    CountryAggregationStrategy,
    OverviewAggregationStrategy,
    PlatformOverviewStrategy,
    TrendAggregationStrategy,
)
from utils.analytics_utils import calculate_performance_metrics, round_half_up

log = get_logger(__name__)

RECENT_ACTIVITY_LIMIT = 10
TOP_COUNTRIES_LIMIT = 5
TOP_BROWSERS_LIMIT = 5
PLATFORM_PERFORMANCE_HOURS = 24
URL_LIVE_SHORT_WINDOW = timedelta(minutes=5)
URL_LIVE_LONG_WINDOW = timedelta(hours=1)

RECENT_ACTIVITY_FIELDS = [
    "url_id",
    "short_code",
    "clicked_at",
    "referrer",
    "location.country",
    "location.city",
    "device.type",
    "device.browser",
]


def _dig(row: dict[str, Any], path: str) -> Any:
    value: Any = row
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class AnalyticsService:
    def __init__(
        self,
        clicks: ClickStore,
        urls: UrlStore,
        settings: Optional[AnalyticsSettings] = None,
        cache: Optional[DualCache] = None,
    ) -> None:
        self._clicks = clicks
        self._urls = urls
        self._settings = settings or AnalyticsSettings()
        self._cache = cache or DualCache(None)

    # ── helpers ──────────────────────────────────────────────────────────────

    def _window(
        self, start: Optional[datetime], end: Optional[datetime]
    ) -> tuple[datetime, datetime]:
        end = end or utc_now()
        start = start or end - timedelta(days=self._settings.default_range_days)
        if start > end:
            raise ValidationError("start must not be after end", field="start_date")
        return start, end

    async def _run(self, strategy: AggregationStrategy, query: ClickQuery) -> Any:
        results = await self._clicks.aggregate(strategy.build_pipeline(query.to_filter()))
        return strategy.format_results(results)

    def _short_url(self, short_code: Optional[str]) -> Optional[str]:
        if not short_code:
            return None
        return f"{self._settings.short_url_base.rstrip('/')}/{short_code}"

    async def require_url(self, url_id: ObjectId) -> UrlDoc:
        url = await self._urls.find_by_id(url_id)
        if url is None:
            raise NotFoundError("url not found", details={"url_id": str(url_id)})
        return url

    async def find_url_by_short_code(self, short_code: str) -> Optional[UrlDoc]:
        return await self._urls.find_by_short_code(short_code)

    async def get_public_stats(self, short_code: str) -> PublicUrlStats:
        url = await self._urls.find_by_short_code(short_code)
        if url is None or url.is_expired:
            raise NotFoundError("short url not found", details={"short_code": short_code})
        return PublicUrlStats(
            short_code=url.short_code,
            short_url=self._short_url(url.short_code),
            title=url.title or "Untitled",
            domain=extract_domain(url.long_url),
            created_at=url.created_at,
            total_clicks=url.total_clicks,
            is_active=url.is_active,
        )

    # ── windowed reports ─────────────────────────────────────────────────────

    async def query_analytics(
        self,
        url_id: Optional[ObjectId] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        exclude_bots: bool = True,
    ) -> AnalyticsReport:
        """Full facet report for one URL, or every URL when *url_id* is None."""
        start, end = self._window(start, end)
        query = ClickQuery.for_urls(
            None if url_id is None else [url_id], start, end, exclude_bots
        )
        strategies = AggregationStrategyFactory.report_strategies()
        results = await asyncio.gather(*(self._run(s, query) for s in strategies))
        facets = {s.dimension_name: r for s, r in zip(strategies, results)}

        if should_sample("analytics_query"):
            log.info(
                "analytics_query",
                url_id=str(url_id) if url_id else None,
                start=start.isoformat(),
                end=end.isoformat(),
                exclude_bots=exclude_bots,
                total_clicks=facets["overview"].total_clicks,
            )

        return AnalyticsReport(
            url_id=str(url_id) if url_id else None,
            date_range=DateRange(start=start, end=end),
            overview=facets["overview"],
            by_country=facets["country"],
            by_device=facets["device"],
            by_browser=facets["browser"],
            by_referrer=facets["referrer"],
            clicks_by_hour=facets["hour"],
            clicks_by_day=facets["day"],
        )

    async def get_url_analytics(
        self,
        url_id: ObjectId,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        exclude_bots: bool = True,
        include_realtime: bool = False,
    ) -> UrlAnalyticsReport:
        url = await self.require_url(url_id)
        report = await self.query_analytics(url.id, start, end, exclude_bots)
        realtime = None
        if include_realtime:
            realtime = await self.get_url_realtime_stats(url.id, url.short_code)

        return UrlAnalyticsReport(
            url=UrlSummary(
                id=str(url.id),
                short_code=url.short_code,
                long_url=url.long_url,
                title=url.title,
                created_at=url.created_at,
                total_clicks=url.total_clicks,
                unique_clicks=url.unique_clicks,
                last_clicked_at=url.last_clicked_at,
            ),
            date_range=report.date_range,
            overview=report.overview,
            geographic=GeographicBlock(
                by_country=report.by_country,
                top_countries=report.by_country[:TOP_COUNTRIES_LIMIT],
            ),
            technology=TechnologyBlock(
                by_device=report.by_device,
                by_browser=report.by_browser,
                top_browsers=report.by_browser[:TOP_BROWSERS_LIMIT],
            ),
            traffic=TrafficBlock(
                by_referrer=report.by_referrer,
                clicks_by_hour=report.clicks_by_hour,
                clicks_by_day=report.clicks_by_day,
            ),
            performance=calculate_performance_metrics(report, url.created_at, utc_now()),
            realtime=realtime,
        )

    async def get_owner_dashboard(
        self,
        owner_id: ObjectId,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        top_urls: int = 10,
    ) -> OwnerDashboard:
        start, end = self._window(start, end)
        dashboard = OwnerDashboard(
            owner_id=str(owner_id), date_range=DateRange(start=start, end=end)
        )
        url_ids = await self._urls.find_ids_by_owner(owner_id)
        if not url_ids:
            return dashboard

        query = ClickQuery.for_urls(url_ids, start, end, exclude_bots=True)
        overview, trends, countries, urls, recent = await asyncio.gather(
            self._run(OverviewAggregationStrategy(), query),
            self._run(TrendAggregationStrategy(), query),
            self._run(CountryAggregationStrategy(limit=TOP_COUNTRIES_LIMIT), query),
            self._urls.find_top_by_owner(owner_id, top_urls),
            self._recent_activity(query),
        )
        dashboard.overview = overview
        dashboard.trends = trends
        dashboard.top_countries = countries
        dashboard.top_urls = [
            TopUrl(
                url_id=str(url.id),
                short_code=url.short_code,
                title=url.title,
                total_clicks=url.total_clicks,
                unique_clicks=url.unique_clicks,
                last_clicked_at=url.last_clicked_at,
            )
            for url in urls
        ]
        dashboard.recent_activity = recent
        return dashboard

    async def _recent_activity(self, query: ClickQuery) -> list[RecentActivity]:
        rows = await self._clicks.find(
            query, fields=RECENT_ACTIVITY_FIELDS, limit=RECENT_ACTIVITY_LIMIT
        )
        titles = {
            url.id: url.title
            for url in await self._urls.find_by_ids({row["url_id"] for row in rows})
        }
        return [
            RecentActivity(
                clicked_at=row["clicked_at"],
                short_code=row.get("short_code", ""),
                title=titles.get(row["url_id"]),
                country=_dig(row, "location.country"),
                city=_dig(row, "location.city"),
                device_type=_dig(row, "device.type"),
                browser=_dig(row, "device.browser"),
                referrer=row.get("referrer"),
            )
            for row in rows
        ]

    async def get_platform_analytics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Optional[dict[str, Any]]:
        """Platform report as JSON-ready dict, served through the report cache.

        Returns None while another worker holds the cache lock.
        """
        start, end = self._window(start, end)
        key = f"analytics:platform:{start:%Y%m%d%H}:{end:%Y%m%d%H}"

        async def _payload() -> dict[str, Any]:
            report = await self.build_platform_report(start, end)
            return report.model_dump(mode="json")

        return await self._cache.get_or_set(key, _payload)

    async def build_platform_report(self, start: datetime, end: datetime) -> PlatformReport:
        now = utc_now()
        query = ClickQuery(start=start, end=end, exclude_bots=True)
        last_day = ClickQuery(
            start=now - timedelta(hours=PLATFORM_PERFORMANCE_HOURS), exclude_bots=True
        )
        overview, trends, day_overview, realtime = await asyncio.gather(
            self._run(PlatformOverviewStrategy(), query),
            self._run(TrendAggregationStrategy(), query),
            self._run(OverviewAggregationStrategy(), last_day),
            self.get_realtime_stats(),
        )
        return PlatformReport(
            date_range=DateRange(start=start, end=end),
            overview=overview,
            trends=trends,
            performance=PlatformPerformance(
                window_hours=PLATFORM_PERFORMANCE_HOURS,
                total_clicks=day_overview.total_clicks,
                unique_visitors=day_overview.unique_visitors,
                clicks_per_hour=round_half_up(
                    day_overview.total_clicks / PLATFORM_PERFORMANCE_HOURS, 2
                ),
                average_load_time=day_overview.average_load_time,
            ),
            realtime=realtime,
        )

    async def generate_report(
        self,
        report_type: str,
        target_id: Optional[ObjectId] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> GeneratedReport:
        if report_type not in REPORT_TYPES:
            raise ValidationError(
                f"report type must be one of: {', '.join(sorted(REPORT_TYPES))}",
                field="report_type",
            )
        if report_type != "platform" and target_id is None:
            raise ValidationError(f"a {report_type} report needs a target id", field="target_id")

        start, end = self._window(start, end)
        if report_type == "url":
            data = await self.get_url_analytics(target_id, start, end, include_realtime=True)
        elif report_type == "owner":
            data = await self.get_owner_dashboard(target_id, start, end)
        else:
            data = await self.build_platform_report(start, end)

        return GeneratedReport(
            metadata=ReportMetadata(
                report_type=report_type,
                target_id=str(target_id) if target_id else None,
                generated_at=utc_now(),
                date_range=DateRange(start=start, end=end),
            ),
            data=data.model_dump(mode="json"),
        )

    # ── short-window statistics ──────────────────────────────────────────────

    async def get_realtime_stats(self, minutes: Optional[int] = None) -> RealtimeStatistics:
        """Human clicks in the trailing window, platform-wide."""
        minutes = minutes or self._settings.realtime_window_minutes
        query = ClickQuery(start=utc_now() - timedelta(minutes=minutes), exclude_bots=True)
        recent, urls, countries = await asyncio.gather(
            self._clicks.count(query),
            self._clicks.distinct("url_id", query),
            self._clicks.distinct("location.country", query),
        )
        return RealtimeStatistics(
            time_window_minutes=minutes,
            recent_clicks=recent,
            active_urls=len(urls),
            active_countries=len(countries),
            avg_clicks_per_minute=round_half_up(recent / minutes, 2),
        )

    async def _live_visitors(self) -> int:
        since = utc_now() - timedelta(minutes=self._settings.live_visitor_window_minutes)
        ips = await self._clicks.distinct(
            "ip_address", ClickQuery(start=since, exclude_bots=True)
        )
        return len(ips)

    async def get_realtime_analytics(self, minutes: Optional[int] = None) -> RealtimeAnalytics:
        """Statistics plus the most clicked URLs in the window."""
        minutes = minutes or self._settings.realtime_window_minutes
        query = ClickQuery(start=utc_now() - timedelta(minutes=minutes), exclude_bots=True)
        statistics, active, live_visitors = await asyncio.gather(
            self.get_realtime_stats(minutes),
            self._run(ActiveUrlAggregationStrategy(limit=10), query),
            self._live_visitors(),
        )
        urls = {
            str(url.id): url
            for url in await self._urls.find_by_ids(ObjectId(a.url_id) for a in active)
        }
        for entry in active:
            url = urls.get(entry.url_id)
            if url is not None:
                entry.short_code = url.short_code
                entry.short_url = self._short_url(url.short_code)
                entry.title = url.title
        return RealtimeAnalytics(
            time_window=f"{minutes}min",
            statistics=statistics,
            active_urls=active,
            live_visitors=live_visitors,
            last_updated=utc_now(),
        )

    async def get_url_realtime_stats(
        self, url_id: ObjectId, short_code: Optional[str] = None
    ) -> UrlRealtimeStats:
        now = utc_now()
        base = ClickQuery.for_urls([url_id], exclude_bots=True)
        last_hour = base.with_window(now - URL_LIVE_LONG_WINDOW)
        last_5 = base.with_window(now - URL_LIVE_SHORT_WINDOW)
        short_count, hour_count, visitors, countries = await asyncio.gather(
            self._clicks.count(last_5),
            self._clicks.count(last_hour),
            self._clicks.distinct("ip_address", last_hour),
            self._clicks.distinct("location.country", last_hour),
        )
        return UrlRealtimeStats(
            short_code=short_code,
            clicks_last_5_minutes=short_count,
            clicks_last_hour=hour_count,
            unique_visitors_last_hour=len(visitors),
            active_countries=sorted(str(c) for c in countries),
            last_updated=now,
        )

    async def get_global_realtime_snapshot(self) -> RealtimeAnalytics:
        """Live payload for the platform topic: statistics plus recently clicked URLs."""
        minutes = self._settings.realtime_window_minutes
        since = utc_now() - timedelta(minutes=minutes)
        statistics, recent_urls, live_visitors = await asyncio.gather(
            self.get_realtime_stats(minutes),
            self._urls.find_recently_active(since, self._settings.top_active_urls),
            self._live_visitors(),
        )
        return RealtimeAnalytics(
            time_window=f"{minutes}min",
            statistics=statistics,
            active_urls=[
                ActiveUrl(
                    url_id=str(url.id),
                    short_code=url.short_code,
                    short_url=self._short_url(url.short_code),
                    title=url.title,
                    click_count=url.total_clicks,
                    unique_visitors=url.unique_clicks,
                    last_click=url.last_clicked_at,
                )
                for url in recent_urls
            ],
            live_visitors=live_visitors,
            last_updated=utc_now(),
        )

    # ── export ───────────────────────────────────────────────────────────────

    async def export_events(
        self,
        url_id: ObjectId,
        fields: Iterable[str],
        exclude_bots: bool = True,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """Selected fields of a URL's click events, newest first."""
        url = await self.require_url(url_id)
        max_rows = self._settings.export_max_rows
        rows = await self._clicks.find(
            ClickQuery.for_urls([url.id], start, end, exclude_bots),
            fields=list(fields),
            limit=min(limit, max_rows) if limit else max_rows,
        )
        if should_sample("click_export"):
            log.info("click_export", url_id=str(url.id), rows=len(rows))
        return rows
