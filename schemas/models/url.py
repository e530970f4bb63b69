"""
URL document model.

The URL collection is owned by the link-management service; this model is
the read view the analytics pipeline needs plus the counter fields it is
allowed to mutate (total_clicks, unique_clicks, last_clicked_at).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from schemas.models.base import MongoBaseModel, PyObjectId
from shared.datetime_utils import ensure_utc, utc_now


class UrlDoc(MongoBaseModel):
    """Document model for the `urls` collection."""

    short_code: str
    long_url: str
    owner_id: Optional[PyObjectId] = None
    title: Optional[str] = None
    is_active: bool = True
    expires_at: Optional[datetime] = None
    created_at: datetime

    total_clicks: int = 0
    unique_clicks: int = 0
    last_clicked_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) <= utc_now()

    @property
    def accepts_clicks(self) -> bool:
        return self.is_active and not self.is_expired


class UrlCounters(MongoBaseModel):
    """Post-increment counter snapshot returned by the atomic update."""

    total_clicks: int = 0
    unique_clicks: int = 0
    last_clicked_at: Optional[datetime] = None
