"""
Click event document model.

Maps to the `clicks` MongoDB collection. A click event is written once and
never updated: the normalized IP, the timestamp and every derived fact
(location, device, bot flag, uniqueness, campaign) are fixed at ingestion.

Sub-documents are stored nested (`location.country`, `device.browser`, ...)
so the aggregation pipelines and exports address them by dotted path.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.models.base import MongoBaseModel, PyObjectId

MAX_USER_AGENT_LENGTH = 1000
MAX_REFERRER_LENGTH = 500
MAX_SESSION_ID_LENGTH = 100
MAX_CUSTOM_DATA_KEYS = 50

# Values allowed in custom_data; containers are rejected
CustomValue = Union[bool, int, float, str, datetime]


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LocationInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    country: Optional[str] = Field(default=None, max_length=2)
    country_name: Optional[str] = Field(default=None, max_length=100)
    region: Optional[str] = Field(default=None, max_length=100)
    city: Optional[str] = Field(default=None, max_length=100)
    timezone: Optional[str] = Field(default=None, max_length=50)
    coordinates: Optional[Coordinates] = None
    isp: Optional[str] = Field(default=None, max_length=200)
    organization: Optional[str] = Field(default=None, max_length=200)

    @field_validator("country")
    @classmethod
    def _upper_country(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class ScreenResolution(BaseModel):
    width: int = Field(ge=0)
    height: int = Field(ge=0)


class DeviceInfo(BaseModel):
    type: str = "unknown"
    browser: Optional[str] = Field(default=None, max_length=100)
    browser_version: Optional[str] = Field(default=None, max_length=50)
    engine: Optional[str] = Field(default=None, max_length=50)
    os: Optional[str] = Field(default=None, max_length=100)
    os_version: Optional[str] = Field(default=None, max_length=50)
    screen_resolution: Optional[ScreenResolution] = None
    language: Optional[str] = Field(default=None, max_length=10)

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        if v not in {"desktop", "mobile", "tablet", "bot", "unknown"}:
            raise ValueError(f"unknown device type: {v!r}")
        return v


class CampaignInfo(BaseModel):
    source: Optional[str] = Field(default=None, max_length=100)
    medium: Optional[str] = Field(default=None, max_length=100)
    campaign: Optional[str] = Field(default=None, max_length=100)
    term: Optional[str] = Field(default=None, max_length=100)
    content: Optional[str] = Field(default=None, max_length=100)


class ClickEventDoc(MongoBaseModel):
    """Document model for the `clicks` collection."""

    url_id: PyObjectId
    short_code: str
    visitor_id: Optional[PyObjectId] = None

    ip_address: str
    user_agent: Optional[str] = Field(default=None, max_length=MAX_USER_AGENT_LENGTH)
    referrer: Optional[str] = Field(default=None, max_length=MAX_REFERRER_LENGTH)
    session_id: Optional[str] = Field(default=None, max_length=MAX_SESSION_ID_LENGTH)
    custom_data: dict[str, CustomValue] = Field(default_factory=dict)
    load_time: Optional[float] = Field(default=None, ge=0)

    location: Optional[LocationInfo] = None
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    is_bot: bool = False
    is_unique: bool = False
    campaign: Optional[CampaignInfo] = None

    clicked_at: datetime

    @field_validator("custom_data")
    @classmethod
    def _bounded_custom_data(cls, v: dict[str, CustomValue]) -> dict[str, CustomValue]:
        if len(v) > MAX_CUSTOM_DATA_KEYS:
            raise ValueError(f"custom_data accepts at most {MAX_CUSTOM_DATA_KEYS} keys")
        return v
