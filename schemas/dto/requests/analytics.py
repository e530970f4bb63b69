"""
Request DTOs for click ingestion, analytics queries, exports and retention.

ClickSubmission: one redirect event handed to the ingestion pipeline
AnalyticsQuery: GET /api/v1/analytics/...  (query parameters)
ExportQuery: GET /api/v1/analytics/urls/{id}/export
RetentionRequest: one retention sweep

parse_request() turns pydantic failures into the application's
ValidationError so boundary errors share the AppError JSON shape.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from schemas.models.base import PyObjectId
from schemas.models.click import (
    MAX_CUSTOM_DATA_KEYS,
    MAX_REFERRER_LENGTH,
    MAX_SESSION_ID_LENGTH,
    MAX_USER_AGENT_LENGTH,
    CustomValue,
)
from shared.datetime_utils import parse_datetime, utc_now

ALLOWED_EXPORT_FORMATS = frozenset({"csv", "xlsx", "json", "xml"})
ALLOWED_EXPORT_FIELDS = frozenset(
    {
        "clicked_at",
        "short_code",
        "ip_address",
        "user_agent",
        "referrer",
        "session_id",
        "visitor_id",
        "is_bot",
        "is_unique",
        "load_time",
        "custom_data",
        "location",
        "location.country",
        "location.country_name",
        "location.region",
        "location.city",
        "location.timezone",
        "location.coordinates",
        "location.isp",
        "location.organization",
        "device",
        "device.type",
        "device.browser",
        "device.browser_version",
        "device.engine",
        "device.os",
        "device.os_version",
        "device.language",
        "campaign",
        "campaign.source",
        "campaign.medium",
        "campaign.campaign",
        "campaign.term",
        "campaign.content",
    }
)
DEFAULT_EXPORT_FIELDS: tuple[str, ...] = (
    "clicked_at",
    "location.country",
    "location.city",
    "device.type",
    "device.browser",
    "referrer",
)
REPORT_TYPES = frozenset({"url", "owner", "platform"})

MAX_IP_CANDIDATE_LENGTH = 64

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse_comma_separated(value: Any) -> list[str]:
    """Split a comma-separated string or pass-through a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def parse_request(model: Type[ModelT], data: Mapping[str, Any]) -> ModelT:
    """Validate *data* into *model*, raising the application ValidationError."""
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(
            first.get("msg", "invalid request"),
            field=field,
            details=exc.errors(
                include_url=False, include_context=False, include_input=False
            ),
        ) from exc


class ClickSubmission(BaseModel):
    """Raw facts about one redirect, before normalization and enrichment."""

    model_config = ConfigDict(populate_by_name=True)

    url_id: PyObjectId
    ip_address: Optional[str] = Field(default=None, max_length=MAX_IP_CANDIDATE_LENGTH)
    headers: dict[str, str] = Field(default_factory=dict)
    user_agent: Optional[str] = Field(default=None, max_length=MAX_USER_AGENT_LENGTH)
    referrer: Optional[str] = Field(default=None, max_length=MAX_REFERRER_LENGTH)
    visitor_id: Optional[PyObjectId] = None
    session_id: Optional[str] = Field(default=None, max_length=MAX_SESSION_ID_LENGTH)
    custom_data: dict[str, CustomValue] = Field(default_factory=dict)
    load_time: Optional[float] = Field(default=None, ge=0)

    # Optional client hints
    screen_width: Optional[int] = Field(default=None, ge=0)
    screen_height: Optional[int] = Field(default=None, ge=0)
    language: Optional[str] = Field(default=None, max_length=10)

    @field_validator("referrer", "user_agent", "session_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("custom_data")
    @classmethod
    def _bounded_custom_data(cls, v: dict[str, CustomValue]) -> dict[str, CustomValue]:
        if len(v) > MAX_CUSTOM_DATA_KEYS:
            raise ValueError(f"custom_data accepts at most {MAX_CUSTOM_DATA_KEYS} keys")
        return v


class AnalyticsQuery(BaseModel):
    """Time window and filters shared by the analytics endpoints.

    Dates accept ISO 8601 strings or Unix epoch seconds. When both are absent
    the window is the trailing ``default_days``.
    """

    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[str] = None
    end_date: Optional[str] = None
    exclude_bots: bool = True
    include_realtime: bool = False
    default_days: int = Field(default=30, ge=1, exclude=True)

    start: Optional[datetime] = Field(default=None, exclude=True)
    end: Optional[datetime] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _resolve_window(self) -> "AnalyticsQuery":
        end = parse_datetime(self.end_date) if self.end_date else utc_now()
        if end is None:
            raise ValueError("end_date must be ISO 8601 or epoch seconds")
        if self.start_date:
            start = parse_datetime(self.start_date)
            if start is None:
                raise ValueError("start_date must be ISO 8601 or epoch seconds")
        else:
            start = end - timedelta(days=self.default_days)
        if start > end:
            raise ValueError("start_date must not be after end_date")
        self.start = start
        self.end = end
        return self


class ExportQuery(BaseModel):
    """Query parameters for the click export endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    format: str = "json"
    fields: Optional[str] = None
    exclude_bots: bool = True
    limit: Optional[int] = Field(default=None, ge=1)

    parsed_fields: list[str] = Field(default_factory=list, exclude=True)

    @field_validator("format", mode="after")
    @classmethod
    def _validate_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ALLOWED_EXPORT_FORMATS:
            raise ValueError(
                f"invalid format, must be one of: {', '.join(sorted(ALLOWED_EXPORT_FORMATS))}"
            )
        return v

    @model_validator(mode="after")
    def _parse_fields(self) -> "ExportQuery":
        raw = _parse_comma_separated(self.fields)
        invalid = set(raw) - ALLOWED_EXPORT_FIELDS
        if invalid:
            raise ValueError(f"invalid export fields: {', '.join(sorted(invalid))}")
        self.parsed_fields = raw or list(DEFAULT_EXPORT_FIELDS)
        return self


class RetentionRequest(BaseModel):
    """Parameters of one retention sweep."""

    retention_days: int = Field(default=365, ge=1)
    batch_size: int = Field(default=1000, ge=1, le=100_000)
    dry_run: bool = False

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)
