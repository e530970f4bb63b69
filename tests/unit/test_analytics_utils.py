"""Unit tests for utils/analytics_utils.py derived metrics."""

from datetime import datetime, timedelta, timezone

import pytest

from schemas.dto.responses.analytics import (
    AnalyticsReport,
    CountryCount,
    DailyBucket,
    DateRange,
    DimensionCount,
    HourlyBucket,
    Overview,
)
from utils.analytics_utils import (
    calculate_clicks_per_day,
    calculate_conversion_rate,
    calculate_engagement_score,
    calculate_performance_metrics,
    calculate_trend,
    country_name_for,
    find_peak_hour,
    round_half_up,
)

NOW = datetime(2024, 3, 31, 12, tzinfo=timezone.utc)


def _days(*counts):
    return [
        DailyBucket(
            date=f"2024-03-{i + 1:02d}",
            count=c,
            unique_visitors=c,
            unique_registered_visitors=0,
            unique_countries=1,
            unique_device_types=1,
            bot_clicks=0,
            human_clicks=c,
        )
        for i, c in enumerate(counts)
    ]


def _hours(**counts):
    return [
        HourlyBucket(hour=int(h[1:]), count=c, unique_visitors=c, unique_ips=c)
        for h, c in counts.items()
    ]


# ---------------------------------------------------------------------------
# Scalar metrics
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, digits, expected",
    [(2.5, 0, 3.0), (0.125, 2, 0.13), (66.6666, 2, 66.67), (1.0, 2, 1.0)],
)
def test_round_half_up(value, digits, expected):
    assert round_half_up(value, digits) == expected


class TestClicksPerDay:
    def test_average_over_age(self):
        assert calculate_clicks_per_day(30, NOW - timedelta(days=10), NOW) == 3.0

    def test_same_day_is_zero(self):
        assert calculate_clicks_per_day(30, NOW - timedelta(hours=5), NOW) == 0.0

    def test_naive_creation_date(self):
        created = (NOW - timedelta(days=4)).replace(tzinfo=None)
        assert calculate_clicks_per_day(10, created, NOW) == 2.5


class TestConversionRate:
    def test_ratio_as_percent(self):
        assert calculate_conversion_rate(3, 2) == 66.67

    def test_no_clicks(self):
        assert calculate_conversion_rate(0, 0) == 0.0


class TestEngagementScore:
    def test_saturates_at_100(self):
        assert calculate_engagement_score(500, 500, 4, 10) == 100

    def test_empty(self):
        assert calculate_engagement_score(0, 0, 0, 0) == 0

    def test_weighted(self):
        # 15 (volume) + 12.5 (unique) + 12.5 (devices) + 4 (countries) = 44
        assert calculate_engagement_score(50, 25, 2, 2) == 44


class TestPeakHour:
    def test_highest_count(self):
        assert find_peak_hour(_hours(h3=2, h14=9, h20=4)) == 14

    def test_tie_goes_to_earliest(self):
        assert find_peak_hour(_hours(h8=5, h9=5)) == 8

    def test_empty(self):
        assert find_peak_hour([]) is None


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "counts, expected",
    [
        ((), "stable"),
        ((5,), "stable"),
        ((1, 1, 1, 1, 1, 1, 1, 5, 5, 5, 5, 5, 5, 5), "up"),
        ((5, 5, 5, 5, 5, 5, 5, 1, 1, 1, 1, 1, 1, 1), "down"),
        ((10, 10, 10, 10, 10, 10, 10, 10, 10, 10, 10, 10, 10, 11), "stable"),
        ((0, 0, 0, 0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0), "up"),
        ((0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0), "stable"),
    ],
    ids=["empty", "single", "up", "down", "within_threshold", "from_zero", "all_zero"],
)
def test_calculate_trend(counts, expected):
    assert calculate_trend(_days(*counts)) == expected


def test_trend_with_short_history_is_stable():
    # 7 buckets or fewer: nothing older to compare against
    assert calculate_trend(_days(1, 2, 3, 4, 5, 6, 7)) == "stable"


# ---------------------------------------------------------------------------
# Country names and the combined metrics block
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "code, expected",
    [("DE", "Germany"), ("de", "Germany"), ("XX", "Local/Private"), ("ZZ", None), ("", None)],
    ids=["upper", "lower", "placeholder", "unknown", "empty"],
)
def test_country_name_for(code, expected):
    assert country_name_for(code) == expected


def test_calculate_performance_metrics():
    report = AnalyticsReport(
        date_range=DateRange(start=NOW - timedelta(days=30), end=NOW),
        overview=Overview(total_clicks=20, unique_clicks=10),
        by_device=[DimensionCount(value="desktop", count=20)],
        by_country=[CountryCount(country="DE", count=20)],
        clicks_by_hour=_hours(h10=20),
        clicks_by_day=_days(20),
    )
    metrics = calculate_performance_metrics(report, NOW - timedelta(days=10), NOW)
    assert metrics.clicks_per_day == 2.0
    assert metrics.conversion_rate == 50.0
    assert metrics.peak_hour == 10
    assert metrics.trend_direction == "stable"
    # 6 + 12.5 + 6.25 + 2 = 26.75
    assert metrics.engagement_score == 27
