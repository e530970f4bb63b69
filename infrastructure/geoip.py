"""Async GeoIP wrapper around the synchronous geoip2 library.

geoip2 reads from local .mmdb files and is CPU-bound/IO-bound sync.
Calls are wrapped in asyncio.to_thread() to avoid blocking the event loop.

- lookup() never raises: a missing database, an unknown address or a corrupt
  record all yield None ("no data").
- Private and local addresses resolve to a fixed placeholder without touching
  the database.
- Readers are lazy-loaded on first use (double-checked locking with asyncio.Lock).
"""

import asyncio
from typing import Callable, Optional

import geoip2.database
import geoip2.errors
import maxminddb

from schemas.models.click import Coordinates, LocationInfo
from shared.ip_utils import is_private_ip
from shared.logging import get_logger

log = get_logger(__name__)

LOCAL_LOCATION = LocationInfo(
    country="XX",
    country_name="Local/Private",
    region="Local",
    city="Local",
)

_LOOKUP_ERRORS = (
    geoip2.errors.AddressNotFoundError,
    ValueError,
    maxminddb.InvalidDatabaseError,
)


class GeoIPService:
    def __init__(
        self, city_db_path: str, asn_db_path: Optional[str] = None, enabled: bool = True
    ) -> None:
        self._city_db_path = city_db_path
        self._asn_db_path = asn_db_path
        self._enabled = enabled
        self._city_reader: Optional[geoip2.database.Reader] = None
        self._asn_reader: Optional[geoip2.database.Reader] = None
        self._city_loaded = False
        self._asn_loaded = False
        self._lock = asyncio.Lock()

    @property
    def status(self) -> str:
        """Database state for health checks: disabled, pending (not opened yet), ok or unavailable."""
        if not self._enabled:
            return "disabled"
        if not self._city_loaded:
            return "pending"
        return "ok" if self._city_reader is not None else "unavailable"

    async def _open(self, path: str, event: str) -> Optional[geoip2.database.Reader]:
        try:
            return await asyncio.to_thread(geoip2.database.Reader, path)
        except (OSError, maxminddb.InvalidDatabaseError) as e:
            log.warning(event, path=path, error=str(e), error_type=type(e).__name__)
            return None

    async def _get_city_reader(self) -> Optional[geoip2.database.Reader]:
        if not self._city_loaded:
            async with self._lock:
                if not self._city_loaded:
                    self._city_reader = await self._open(
                        self._city_db_path, "geoip_city_db_unavailable"
                    )
                    self._city_loaded = True
        return self._city_reader

    async def _get_asn_reader(self) -> Optional[geoip2.database.Reader]:
        if not self._asn_db_path:
            return None
        if not self._asn_loaded:
            async with self._lock:
                if not self._asn_loaded:
                    self._asn_reader = await self._open(
                        self._asn_db_path, "geoip_asn_db_unavailable"
                    )
                    self._asn_loaded = True
        return self._asn_reader

    async def _query(self, fn: Callable, ip_address: str):
        try:
            return await asyncio.to_thread(fn, ip_address)
        except _LOOKUP_ERRORS:
            return None

    async def lookup(self, ip_address: str) -> Optional[LocationInfo]:
        """Resolve *ip_address* to a location, or None when there is no data."""
        if is_private_ip(ip_address):
            return LOCAL_LOCATION
        if not self._enabled:
            return None

        city_reader = await self._get_city_reader()
        if city_reader is None:
            return None
        city = await self._query(city_reader.city, ip_address)
        if city is None:
            return None

        coordinates = None
        if city.location.latitude is not None and city.location.longitude is not None:
            coordinates = Coordinates(
                latitude=city.location.latitude, longitude=city.location.longitude
            )

        isp = None
        asn_reader = await self._get_asn_reader()
        if asn_reader is not None:
            asn = await self._query(asn_reader.asn, ip_address)
            if asn is not None:
                isp = asn.autonomous_system_organization

        return LocationInfo(
            country=city.country.iso_code,
            country_name=city.country.name,
            region=city.subdivisions.most_specific.name,
            city=city.city.name,
            timezone=city.location.time_zone,
            coordinates=coordinates,
            isp=isp,
            organization=isp,
        )

    def close(self) -> None:
        for reader in (self._city_reader, self._asn_reader):
            if reader is not None:
                reader.close()
        self._city_reader = self._asn_reader = None
        self._city_loaded = self._asn_loaded = False
