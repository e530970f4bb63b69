"""Unit tests for MongoDB document models."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.models.base import MongoBaseModel, PyObjectId
from schemas.models.click import (
    MAX_CUSTOM_DATA_KEYS,
    ClickEventDoc,
    Coordinates,
    DeviceInfo,
    LocationInfo,
)
from schemas.models.url import UrlCounters, UrlDoc


# ── Helpers ───────────────────────────────────────────────────────────────────

def now():
    return datetime.now(timezone.utc)


def oid():
    return ObjectId()


# ── PyObjectId ────────────────────────────────────────────────────────────────

class TestPyObjectId:
    def test_accepts_objectid_instance(self):
        o = oid()
        assert PyObjectId._validate(o) == o

    def test_accepts_valid_string(self):
        s = str(oid())
        result = PyObjectId._validate(s)
        assert isinstance(result, ObjectId)
        assert str(result) == s

    def test_rejects_invalid_string(self):
        with pytest.raises(ValueError):
            PyObjectId._validate("not-an-objectid")

    def test_rejects_none(self):
        with pytest.raises((ValueError, TypeError)):
            PyObjectId._validate(None)


# ── MongoBaseModel ─────────────────────────────────────────────────────────────

class TestMongoBaseModel:
    def test_from_mongo_returns_none_for_none(self):
        assert MongoBaseModel.from_mongo(None) is None

    def test_id_alias(self):
        o = oid()
        m = MongoBaseModel.model_validate({"_id": o})
        assert m.id == o

    def test_to_mongo_drops_none_id(self):
        assert "_id" not in MongoBaseModel().to_mongo()

    def test_to_mongo_keeps_set_id(self):
        o = oid()
        assert MongoBaseModel.model_validate({"_id": o}).to_mongo()["_id"] == o

    def test_json_dump_stringifies_id(self):
        o = oid()
        dumped = MongoBaseModel.model_validate({"_id": o}).model_dump(mode="json", by_alias=True)
        assert dumped["_id"] == str(o)


# ── ClickEventDoc ─────────────────────────────────────────────────────────────

class TestClickEventDoc:
    def _make(self, **overrides):
        base = {
            "url_id": oid(),
            "short_code": "abc123",
            "ip_address": "198.51.100.7",
            "clicked_at": now(),
        }
        base.update(overrides)
        return ClickEventDoc.model_validate(base)

    def test_defaults(self):
        doc = self._make()
        assert doc.is_bot is False
        assert doc.is_unique is False
        assert doc.device.type == "unknown"
        assert doc.custom_data == {}
        assert doc.location is None

    def test_to_mongo_keeps_native_types(self):
        url_id = oid()
        clicked_at = now()
        doc = self._make(url_id=url_id, clicked_at=clicked_at).to_mongo()
        assert "_id" not in doc
        assert doc["url_id"] == url_id
        assert doc["clicked_at"] == clicked_at
        assert doc["device"] == DeviceInfo().model_dump()

    def test_url_id_from_string(self):
        o = oid()
        assert self._make(url_id=str(o)).url_id == o

    def test_invalid_url_id_rejected(self):
        with pytest.raises(ValidationError):
            self._make(url_id="nope")

    def test_user_agent_length_bounded(self):
        with pytest.raises(ValidationError):
            self._make(user_agent="x" * 1001)

    def test_negative_load_time_rejected(self):
        with pytest.raises(ValidationError):
            self._make(load_time=-1)

    def test_custom_data_key_limit(self):
        too_many = {f"k{i}": i for i in range(MAX_CUSTOM_DATA_KEYS + 1)}
        with pytest.raises(ValidationError):
            self._make(custom_data=too_many)

    def test_custom_data_rejects_containers(self):
        with pytest.raises(ValidationError):
            self._make(custom_data={"nested": {"a": 1}})

    def test_nested_location_round_trip(self):
        doc = self._make(
            location={
                "country": "de",
                "city": "Berlin",
                "coordinates": {"latitude": 52.52, "longitude": 13.405},
            }
        )
        stored = doc.to_mongo()
        assert stored["location"]["country"] == "DE"
        assert stored["location"]["coordinates"] == {"latitude": 52.52, "longitude": 13.405}
        assert ClickEventDoc.from_mongo({**stored, "_id": oid()}).location.city == "Berlin"


# ── Sub-documents ─────────────────────────────────────────────────────────────

class TestLocationInfo:
    def test_country_uppercased(self):
        assert LocationInfo(country="us").country == "US"

    def test_country_code_length(self):
        with pytest.raises(ValidationError):
            LocationInfo(country="USA")

    @pytest.mark.parametrize(
        "lat, lng",
        [(91, 0), (-91, 0), (0, 181), (0, -181)],
        ids=["lat_high", "lat_low", "lng_high", "lng_low"],
    )
    def test_coordinates_bounded(self, lat, lng):
        with pytest.raises(ValidationError):
            Coordinates(latitude=lat, longitude=lng)


class TestDeviceInfo:
    @pytest.mark.parametrize("kind", ["desktop", "mobile", "tablet", "bot", "unknown"])
    def test_known_types(self, kind):
        assert DeviceInfo(type=kind).type == kind

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            DeviceInfo(type="smartwatch")


# ── UrlDoc ────────────────────────────────────────────────────────────────────

class TestUrlDoc:
    def _make(self, **overrides):
        base = {
            "_id": oid(),
            "short_code": "abc123",
            "long_url": "https://example.com",
            "created_at": now(),
        }
        base.update(overrides)
        return UrlDoc.model_validate(base)

    def test_counters_default_zero(self):
        url = self._make()
        assert url.total_clicks == 0
        assert url.unique_clicks == 0
        assert url.last_clicked_at is None

    def test_active_unexpired_accepts_clicks(self):
        assert self._make().accepts_clicks is True

    def test_inactive_rejects_clicks(self):
        assert self._make(is_active=False).accepts_clicks is False

    def test_expired_rejects_clicks(self):
        url = self._make(expires_at=now() - timedelta(minutes=1))
        assert url.is_expired is True
        assert url.accepts_clicks is False

    def test_naive_expiry_treated_as_utc(self):
        future = (now() + timedelta(hours=1)).replace(tzinfo=None)
        assert self._make(expires_at=future).is_expired is False


def test_url_counters_from_mongo():
    counters = UrlCounters.from_mongo({"_id": oid(), "total_clicks": 4, "unique_clicks": 2})
    assert counters.total_clicks == 4
    assert counters.unique_clicks == 2
