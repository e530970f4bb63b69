from datetime import datetime
import functools
import math
from typing import List, Optional, Sequence

import pycountry

from schemas.dto.responses.analytics import (
    AnalyticsReport,
    DailyBucket,
    HourlyBucket,
    PerformanceMetrics,
)
from shared.datetime_utils import ensure_utc

TREND_WINDOW_DAYS = 7
TREND_THRESHOLD_PERCENT = 10.0


@functools.lru_cache(maxsize=None)
def country_name_for(code: str) -> Optional[str]:
    """Display name for an ISO alpha-2 code; "Local/Private" for the XX placeholder."""
    if not code:
        return None
    if code.upper() == "XX":
        return "Local/Private"
    country = pycountry.countries.get(alpha_2=code.upper())
    if country is None:
        return None
    return getattr(country, "common_name", None) or country.name


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def calculate_clicks_per_day(total_clicks: int, created_at: datetime, now: datetime) -> float:
    age_days = (ensure_utc(now) - ensure_utc(created_at)).days
    if age_days <= 0:
        return 0.0
    return round_half_up(total_clicks / age_days, 2)


def calculate_conversion_rate(total_clicks: int, unique_clicks: int) -> float:
    if total_clicks <= 0:
        return 0.0
    return round_half_up(unique_clicks / total_clicks * 100, 2)


def calculate_engagement_score(
    total_clicks: int, unique_clicks: int, device_types: int, countries: int
) -> int:
    """
    Weighted 0–100 score.

    30 points for volume (saturates at 100 clicks), 25 for the unique ratio,
    25 for device diversity (saturates at 4 types), 20 for geographic
    diversity (saturates at 10 countries).
    """
    score = min(total_clicks / 100, 1) * 30
    if total_clicks > 0:
        score += (unique_clicks / total_clicks) * 25
    score += min(device_types / 4, 1) * 25
    score += min(countries / 10, 1) * 20
    return int(round_half_up(score))


def find_peak_hour(clicks_by_hour: Sequence[HourlyBucket]) -> Optional[int]:
    """Hour with the most clicks; the earliest hour wins a tie."""
    peak_hour = None
    max_clicks = 0
    for bucket in clicks_by_hour:
        if bucket.count > max_clicks:
            max_clicks = bucket.count
            peak_hour = bucket.hour
    return peak_hour


def calculate_trend(clicks_by_day: Sequence[DailyBucket]) -> str:
    """
    Compare the average of the last 7 daily buckets with the 7 before.

    Fewer than two buckets, or no older buckets at all, is "stable". An older
    average of zero with recent clicks is "up".
    """
    if len(clicks_by_day) < 2:
        return "stable"
    recent: List[DailyBucket] = list(clicks_by_day[-TREND_WINDOW_DAYS:])
    older: List[DailyBucket] = list(clicks_by_day[-2 * TREND_WINDOW_DAYS:-TREND_WINDOW_DAYS])
    if not older:
        return "stable"

    recent_avg = sum(day.count for day in recent) / len(recent)
    older_avg = sum(day.count for day in older) / len(older)
    if older_avg == 0:
        return "up" if recent_avg > 0 else "stable"

    change = (recent_avg - older_avg) / older_avg * 100
    if change > TREND_THRESHOLD_PERCENT:
        return "up"
    if change < -TREND_THRESHOLD_PERCENT:
        return "down"
    return "stable"


def calculate_performance_metrics(
    report: AnalyticsReport, created_at: datetime, now: datetime
) -> PerformanceMetrics:
    overview = report.overview
    return PerformanceMetrics(
        clicks_per_day=calculate_clicks_per_day(overview.total_clicks, created_at, now),
        conversion_rate=calculate_conversion_rate(overview.total_clicks, overview.unique_clicks),
        engagement_score=calculate_engagement_score(
            overview.total_clicks,
            overview.unique_clicks,
            len(report.by_device),
            len(report.by_country),
        ),
        peak_hour=find_peak_hour(report.clicks_by_hour),
        trend_direction=calculate_trend(report.clicks_by_day),
    )
