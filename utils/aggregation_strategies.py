from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from schemas.dto.responses.analytics import (
    ActiveUrl,
    CountryCount,
    DailyBucket,
    DimensionCount,
    HourlyBucket,
    Overview,
    PlatformOverview,
    ReferrerCount,
    TrendPoint,
)
from shared.referrers import classify_referrer, extract_domain
from utils.analytics_utils import country_name_for

# A visitor is the authenticated visitor when known, otherwise the IP
VISITOR_KEY: Dict[str, Any] = {"$ifNull": ["$visitor_id", "$ip_address"]}


def _count_if(field: str) -> Dict[str, Any]:
    return {"$sum": {"$cond": [{"$eq": [field, True]}, 1, 0]}}


def _size_without_null(field: str) -> Dict[str, Any]:
    return {"$size": {"$setDifference": [field, [None]]}}


class AggregationStrategy(ABC):
    """Abstract base class for aggregation strategies"""

    @abstractmethod
    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Build aggregation pipeline for this strategy"""
        pass

    @abstractmethod
    def format_results(self, results: List[Dict[str, Any]]) -> Any:
        """Format the aggregation results"""
        pass

    @property
    @abstractmethod
    def dimension_name(self) -> str:
        """Get the dimension name for this strategy"""
        pass


class OverviewAggregationStrategy(AggregationStrategy):
    """Totals over the whole match: clicks, unique clicks, bots, visitors, load time"""

    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"$match": base_query},
            {
                "$group": {
                    "_id": None,
                    "total_clicks": {"$sum": 1},
                    "unique_clicks": _count_if("$is_unique"),
                    "bot_clicks": _count_if("$is_bot"),
                    "visitors": {"$addToSet": VISITOR_KEY},
                    "average_load_time": {"$avg": "$load_time"},
                }
            },
            {
                "$project": {
                    "_id": 0,
                    "total_clicks": 1,
                    "unique_clicks": 1,
                    "bot_clicks": 1,
                    "unique_visitors": {"$size": "$visitors"},
                    "average_load_time": 1,
                }
            },
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> Overview:
        """
        Collapse the single grouped document into an Overview.

        An empty match produces no document at all, which maps to a zeroed
        Overview; an absent load time average maps to 0.
        """
        if not results:
            return Overview()
        row = results[0]
        return Overview(
            total_clicks=row.get("total_clicks", 0),
            unique_clicks=row.get("unique_clicks", 0),
            bot_clicks=row.get("bot_clicks", 0),
            unique_visitors=row.get("unique_visitors", 0),
            average_load_time=round(row.get("average_load_time") or 0.0, 2),
        )

    @property
    def dimension_name(self) -> str:
        return "overview"


class TopDimensionStrategy(AggregationStrategy):
    """
    Top-N values of one field, ranked by click count.

    Ties are broken by first-seen order (earliest clicked_at), then by value,
    so equal counts always come back in the same order.
    """

    field: str = ""
    limit: int = 10
    excluded_values: Sequence[Any] = (None,)

    def __init__(self, limit: Optional[int] = None):
        if limit is not None:
            self.limit = limit

    def extra_accumulators(self) -> Dict[str, Any]:
        return {}

    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        match = dict(base_query)
        match[self.field] = {"$exists": True, "$nin": list(self.excluded_values)}
        return [
            {"$match": match},
            {
                "$group": {
                    "_id": f"${self.field}",
                    "count": {"$sum": 1},
                    "first_seen": {"$min": "$clicked_at"},
                    **self.extra_accumulators(),
                }
            },
            {"$sort": {"count": -1, "first_seen": 1, "_id": 1}},
            {"$limit": self.limit},
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> List[DimensionCount]:
        return [
            DimensionCount(value=str(result["_id"]), count=result.get("count", 0))
            for result in results
        ]


class CountryAggregationStrategy(TopDimensionStrategy):
    """Top countries by ISO code, with the display name carried along"""

    field = "location.country"

    def extra_accumulators(self) -> Dict[str, Any]:
        return {"country_name": {"$first": "$location.country_name"}}

    def format_results(self, results: List[Dict[str, Any]]) -> List[CountryCount]:
        return [
            CountryCount(
                country=result["_id"],
                country_name=result.get("country_name") or country_name_for(result["_id"]),
                count=result.get("count", 0),
            )
            for result in results
        ]

    @property
    def dimension_name(self) -> str:
        return "country"


class DeviceAggregationStrategy(TopDimensionStrategy):
    field = "device.type"

    @property
    def dimension_name(self) -> str:
        return "device"


class BrowserAggregationStrategy(TopDimensionStrategy):
    """Top browsers (name plus version); unrecognised agents are left out"""

    field = "device.browser"
    excluded_values = (None, "Unknown")

    @property
    def dimension_name(self) -> str:
        return "browser"


class ReferrerAggregationStrategy(TopDimensionStrategy):
    field = "referrer"
    excluded_values = (None, "")

    def format_results(self, results: List[Dict[str, Any]]) -> List[ReferrerCount]:
        formatted = []
        for result in results:
            domain = extract_domain(result["_id"])
            formatted.append(
                ReferrerCount(
                    referrer=result["_id"],
                    domain=domain,
                    type=classify_referrer(domain),
                    count=result.get("count", 0),
                )
            )
        return formatted

    @property
    def dimension_name(self) -> str:
        return "referrer"


class HourlyAggregationStrategy(AggregationStrategy):
    """Clicks per hour of day (UTC), with distinct visitors and IPs"""

    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"$match": base_query},
            {
                "$group": {
                    "_id": {"$hour": "$clicked_at"},
                    "count": {"$sum": 1},
                    "visitors": {"$addToSet": VISITOR_KEY},
                    "ips": {"$addToSet": "$ip_address"},
                }
            },
            {
                "$project": {
                    "count": 1,
                    "unique_visitors": {"$size": "$visitors"},
                    "unique_ips": {"$size": "$ips"},
                }
            },
            {"$sort": {"_id": 1}},
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> List[HourlyBucket]:
        return [
            HourlyBucket(
                hour=result["_id"],
                count=result.get("count", 0),
                unique_visitors=result.get("unique_visitors", 0),
                unique_ips=result.get("unique_ips", 0),
            )
            for result in results
        ]

    @property
    def dimension_name(self) -> str:
        return "hour"


class DailyAggregationStrategy(AggregationStrategy):
    """Per-day breakdown (YYYY-MM-DD, UTC) in ascending date order"""

    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"$match": base_query},
            {
                "$group": {
                    "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$clicked_at"}},
                    "count": {"$sum": 1},
                    "visitors": {"$addToSet": VISITOR_KEY},
                    "registered": {"$addToSet": "$visitor_id"},
                    "countries": {"$addToSet": "$location.country"},
                    "device_types": {"$addToSet": "$device.type"},
                    "bot_clicks": _count_if("$is_bot"),
                }
            },
            {
                "$project": {
                    "count": 1,
                    "bot_clicks": 1,
                    "unique_visitors": {"$size": "$visitors"},
                    "unique_registered_visitors": _size_without_null("$registered"),
                    "unique_countries": _size_without_null("$countries"),
                    "unique_device_types": _size_without_null("$device_types"),
                }
            },
            {"$sort": {"_id": 1}},
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> List[DailyBucket]:
        buckets = []
        for result in results:
            count = result.get("count", 0)
            bots = result.get("bot_clicks", 0)
            buckets.append(
                DailyBucket(
                    date=result["_id"],
                    count=count,
                    unique_visitors=result.get("unique_visitors", 0),
                    unique_registered_visitors=result.get("unique_registered_visitors", 0),
                    unique_countries=result.get("unique_countries", 0),
                    unique_device_types=result.get("unique_device_types", 0),
                    bot_clicks=bots,
                    human_clicks=count - bots,
                )
            )
        return buckets

    @property
    def dimension_name(self) -> str:
        return "day"


class TrendAggregationStrategy(AggregationStrategy):
    """Daily clicks and distinct visitors, used by dashboards"""

    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"$match": base_query},
            {
                "$group": {
                    "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$clicked_at"}},
                    "clicks": {"$sum": 1},
                    "visitors": {"$addToSet": VISITOR_KEY},
                }
            },
            {"$project": {"clicks": 1, "unique_visitors": {"$size": "$visitors"}}},
            {"$sort": {"_id": 1}},
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> List[TrendPoint]:
        return [
            TrendPoint(
                date=result["_id"],
                clicks=result.get("clicks", 0),
                unique_visitors=result.get("unique_visitors", 0),
            )
            for result in results
        ]

    @property
    def dimension_name(self) -> str:
        return "trend"


class PlatformOverviewStrategy(AggregationStrategy):
    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"$match": base_query},
            {
                "$group": {
                    "_id": None,
                    "total_clicks": {"$sum": 1},
                    "urls": {"$addToSet": "$url_id"},
                    "visitors": {"$addToSet": VISITOR_KEY},
                }
            },
            {
                "$project": {
                    "_id": 0,
                    "total_clicks": 1,
                    "unique_urls": {"$size": "$urls"},
                    "unique_visitors": {"$size": "$visitors"},
                }
            },
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> PlatformOverview:
        if not results:
            return PlatformOverview()
        row = results[0]
        return PlatformOverview(
            total_clicks=row.get("total_clicks", 0),
            unique_urls=row.get("unique_urls", 0),
            unique_visitors=row.get("unique_visitors", 0),
        )

    @property
    def dimension_name(self) -> str:
        return "platform_overview"


class ActiveUrlAggregationStrategy(AggregationStrategy):
    """Most clicked URLs in a window; URL details are joined by the caller"""

    def __init__(self, limit: int = 10):
        self.limit = limit

    def build_pipeline(self, base_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"$match": base_query},
            {
                "$group": {
                    "_id": "$url_id",
                    "click_count": {"$sum": 1},
                    "visitors": {"$addToSet": "$ip_address"},
                    "last_click": {"$max": "$clicked_at"},
                }
            },
            {
                "$project": {
                    "click_count": 1,
                    "last_click": 1,
                    "unique_visitors": {"$size": "$visitors"},
                }
            },
            {"$sort": {"click_count": -1, "last_click": -1}},
            {"$limit": self.limit},
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> List[ActiveUrl]:
        return [
            ActiveUrl(
                url_id=str(result["_id"]),
                click_count=result.get("click_count", 0),
                unique_visitors=result.get("unique_visitors", 0),
                last_click=result.get("last_click"),
            )
            for result in results
        ]

    @property
    def dimension_name(self) -> str:
        return "active_urls"


class AggregationStrategyFactory:
    """Builds the facet strategies that make up a full analytics report"""

    _strategies = {
        "overview": OverviewAggregationStrategy,
        "country": CountryAggregationStrategy,
        "device": DeviceAggregationStrategy,
        "browser": BrowserAggregationStrategy,
        "referrer": ReferrerAggregationStrategy,
        "hour": HourlyAggregationStrategy,
        "day": DailyAggregationStrategy,
        "trend": TrendAggregationStrategy,
        "platform_overview": PlatformOverviewStrategy,
        "active_urls": ActiveUrlAggregationStrategy,
    }

    REPORT_FACETS = ("overview", "country", "device", "browser", "referrer", "hour", "day")

    @classmethod
    def create_strategy(cls, dimension: str, **kwargs) -> AggregationStrategy:
        if dimension not in cls._strategies:
            raise ValueError(f"Unsupported dimension: {dimension}")
        return cls._strategies[dimension](**kwargs)

    @classmethod
    def report_strategies(cls) -> List[AggregationStrategy]:
        return [cls.create_strategy(name) for name in cls.REPORT_FACETS]
