"""
auth/geo.py -- Address-to-location lookup (GeoResolver) and the location anomaly rule.

Lookups use a local MaxMind GeoLite2-City database through geoip2. They are
best-effort: private and loopback addresses, a missing database, an address
not in the database, a lookup error, or a lookup slower than the configured
timeout all produce Location.unknown(). A location problem never fails a
login or registration.

The anomaly rule: a location is suspicious when it is farther than the
threshold from EVERY previously recorded location. No history, or an
unknown current location, is never suspicious.
"""

from __future__ import annotations

import ipaddress
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

import geoip2.database

from auth.models import Location

logger = logging.getLogger("sentinel.auth.geo")

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two (lat, lon) points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_suspicious_location(current: Location, previous: list[Location], threshold_km: float = 1000.0) -> bool:
    """Return True if current is farther than threshold_km from every known previous location."""
    if not current.is_known:
        return False
    known = [loc for loc in previous if loc.is_known]
    if not known:
        return False
    return not any(
        haversine_km(current.latitude, current.longitude, loc.latitude, loc.longitude) <= threshold_km
        for loc in known
    )


class GeoResolver:
    """IP-to-location lookup service backed by MaxMind GeoLite2."""

    _PRIVATE_RANGES = [
        ipaddress.ip_network("10.0.0.0/8"),
        ipaddress.ip_network("172.16.0.0/12"),
        ipaddress.ip_network("192.168.0.0/16"),
        ipaddress.ip_network("127.0.0.0/8"),
        ipaddress.ip_network("::1/128"),
        ipaddress.ip_network("fc00::/7"),
        ipaddress.ip_network("fe80::/10"),
    ]

    def __init__(self, database_path: str = "", timeout: float = 0.5) -> None:
        """
        Args:
            database_path: Path to a GeoLite2-City .mmdb file. Empty disables lookups.
            timeout: Seconds to wait for a single lookup before giving up.
        """
        self._reader = None
        self._timeout = timeout
        self._executor: ThreadPoolExecutor | None = None
        if database_path:
            try:
                self._reader = geoip2.database.Reader(database_path)
                self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="geoip")
                logger.info("GeoIP database loaded from %s", database_path)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to load GeoIP database %s: %s -- locations will be unknown", database_path, exc)
        else:
            logger.info("No GeoIP database configured -- locations will be unknown")

    def lookup(self, address: str) -> Location:
        """Resolve an IPv4/IPv6 address. Never raises."""
        if not address or self._is_private(address) or self._reader is None:
            return Location.unknown()

        future = self._executor.submit(self._reader.city, address)
        try:
            response = future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("GeoIP lookup timed out for %s", address)
            return Location.unknown()
        except Exception as exc:  # AddressNotFoundError, malformed address, corrupt DB
            logger.debug("GeoIP lookup failed for %s: %s", address, exc)
            return Location.unknown()

        return Location(
            country=response.country.iso_code,
            region=response.subdivisions.most_specific.name,
            city=response.city.name,
            latitude=response.location.latitude,
            longitude=response.location.longitude,
        )

    def _is_private(self, address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False
        return any(ip in network for network in self._PRIVATE_RANGES)

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
