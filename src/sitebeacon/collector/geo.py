"""Best-effort IP to country lookup."""

import ipaddress
import logging
import os
from typing import Annotated

import geoip2.database
import geoip2.errors
from fastapi import Depends, Request
from maxminddb.errors import InvalidDatabaseError

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "Unknown"


class CountryResolver:
    """Resolves addresses to ISO country codes from a local MaxMind database.

    Never raises: non-public addresses, a missing database and failed lookups
    all resolve to ``"Unknown"``.
    """

    def __init__(self, reader: geoip2.database.Reader | None = None) -> None:
        self.reader = reader

    @classmethod
    def from_path(cls, path: str) -> "CountryResolver":
        """Open the database at ``path``; a missing or unreadable file disables lookups."""
        if not os.path.exists(path):
            logger.warning("GeoIP database not found at %s, countries will be Unknown", path)
            return cls()
        try:
            return cls(geoip2.database.Reader(path))
        except (OSError, InvalidDatabaseError):
            logger.exception("Failed to open GeoIP database at %s", path)
            return cls()

    def country(self, raw_ip: str) -> str:
        """Return the country code for ``raw_ip``, or ``"Unknown"``."""
        if self.reader is None or not raw_ip:
            return UNKNOWN_COUNTRY
        try:
            ip_obj = ipaddress.ip_address(raw_ip)
        except ValueError:
            return UNKNOWN_COUNTRY
        if not ip_obj.is_global:
            return UNKNOWN_COUNTRY
        try:
            resp = self.reader.country(raw_ip)
        except (geoip2.errors.GeoIP2Error, ValueError):
            return UNKNOWN_COUNTRY
        code = resp.country.iso_code or resp.registered_country.iso_code
        return code or UNKNOWN_COUNTRY

    def close(self) -> None:
        if self.reader is not None:
            self.reader.close()


def get_geoip(request: Request) -> CountryResolver:
    """Get the country resolver from app state."""
    return request.app.state.geoip


GeoIP = Annotated[CountryResolver, Depends(get_geoip)]
