"""
Atlas Building Registry — Reverse Geocoding

Turns coordinates into a readable address via Nominatim (OpenStreetMap).
Used to fill the free-text location of discovered buildings that arrive
without one.

The cache is an explicit object owned by the caller.  With ``max_entries``
set it evicts least-recently-used entries; with ``None`` it keeps everything
for the process lifetime (fine for a batch run, unbounded for a long-lived
process).

Dependencies:
    pip install requests
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any

from .algorithms.geo_proximity import Coordinates
from .config import NominatimSettings
from .http import JsonHttpClient

logger = logging.getLogger(__name__)


class GeocodeCache:
    """Address cache keyed by coordinates rounded to 6 decimals (~0.1 m)."""

    def __init__(self, max_entries: int | None = 1024) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, str] = OrderedDict()

    @staticmethod
    def key(coordinates: Coordinates) -> str:
        return f"{coordinates.lat:.6f},{coordinates.lng:.6f}"

    def get(self, coordinates: Coordinates) -> str | None:
        key = self.key(coordinates)
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, coordinates: Coordinates, address: str) -> None:
        key = self.key(coordinates)
        self._entries[key] = address
        self._entries.move_to_end(key)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, coordinates: Coordinates) -> bool:
        return self.key(coordinates) in self._entries


def format_address(payload: dict[str, Any]) -> str | None:
    """
    Most specific to least specific: "house road, suburb, city, state, country".
    Falls back to Nominatim's display_name.
    """
    address = payload.get("address") or {}
    parts: list[str] = []
    street = " ".join(p for p in (address.get("house_number"), address.get("road")) if p)
    if street:
        parts.append(street)
    district = address.get("suburb") or address.get("neighbourhood")
    if district:
        parts.append(district)
    town = address.get("city") or address.get("town") or address.get("village")
    if town:
        parts.append(town)
    for key in ("state", "country"):
        if address.get(key):
            parts.append(address[key])

    if parts:
        return ", ".join(parts)
    return payload.get("display_name") or None


class ReverseGeocoder(JsonHttpClient):
    provider = "nominatim"

    def __init__(self, settings: NominatimSettings, cache: GeocodeCache | None = None) -> None:
        # Nominatim's usage policy requires an identifying User-Agent
        super().__init__(timeout=settings.timeout_s, headers={"User-Agent": settings.user_agent})
        self.settings = settings
        self.cache = cache if cache is not None else GeocodeCache()
        self.url = f"{settings.base_url.rstrip('/')}/reverse"

    def reverse(self, coordinates: Coordinates) -> str | None:
        """Formatted address for the coordinates, or None when Nominatim has none."""
        cached = self.cache.get(coordinates)
        if cached is not None:
            return cached

        payload = self.request_json(
            "GET",
            self.url,
            params={
                "format": "json",
                "lat": coordinates.lat,
                "lon": coordinates.lng,
                "zoom": 18,
                "addressdetails": 1,
                "accept-language": self.settings.language,
            },
        )
        address = format_address(payload) if isinstance(payload, dict) else None
        if address:
            self.cache.put(coordinates, address)
        else:
            logger.debug("No address for %s", GeocodeCache.key(coordinates))
        return address
