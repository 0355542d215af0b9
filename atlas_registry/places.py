"""
Atlas Building Registry — Google Places Client

Find Place From Text, Place Details and photo URLs from the Places web
service.  The provider answers HTTP 200 with its own ``status`` field, so the
status is mapped here:

    OK                               → results
    ZERO_RESULTS                     → empty result
    NOT_FOUND / INVALID_REQUEST      → details: None (the id is unusable)
    OVER_QUERY_LIMIT                 → TransientProviderError(rate_limited=True)
    anything else                    → TransientProviderError

Dependencies:
    pip install requests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .config import PlacesSettings
from .errors import ConfigError, TransientProviderError
from .http import JsonHttpClient

logger = logging.getLogger(__name__)


FIND_FIELDS = ("place_id", "types", "name", "formatted_address", "geometry")
DETAILS_FIELDS = ("place_id", "types", "name", "formatted_address", "url", "photos", "geometry")

_UNUSABLE_ID_STATUSES = {"NOT_FOUND", "INVALID_REQUEST"}


@dataclass
class PlaceCandidate:
    """One ranked Find Place result."""
    place_id: str
    name: str = ""
    types: list[str] = field(default_factory=list)
    formatted_address: str = ""
    lat: float | None = None
    lng: float | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "PlaceCandidate":
        lat, lng = _geometry_location(raw)
        return cls(
            place_id=raw.get("place_id", ""),
            name=raw.get("name", ""),
            types=list(raw.get("types") or []),
            formatted_address=raw.get("formatted_address", ""),
            lat=lat,
            lng=lng,
        )


@dataclass
class PlaceDetails:
    place_id: str
    name: str = ""
    types: list[str] = field(default_factory=list)
    formatted_address: str = ""
    canonical_url: str = ""
    photo_references: list[str] = field(default_factory=list)
    lat: float | None = None
    lng: float | None = None

    @property
    def first_photo_reference(self) -> str | None:
        return self.photo_references[0] if self.photo_references else None

    @classmethod
    def from_api(cls, raw: dict[str, Any], place_id: str) -> "PlaceDetails":
        lat, lng = _geometry_location(raw)
        photos = [
            p["photo_reference"]
            for p in raw.get("photos") or []
            if isinstance(p, dict) and p.get("photo_reference")
        ]
        return cls(
            place_id=raw.get("place_id") or place_id,
            name=raw.get("name", ""),
            types=list(raw.get("types") or []),
            formatted_address=raw.get("formatted_address", ""),
            canonical_url=raw.get("url", ""),
            photo_references=photos,
            lat=lat,
            lng=lng,
        )


def _geometry_location(raw: dict[str, Any]) -> tuple[float | None, float | None]:
    location = (raw.get("geometry") or {}).get("location") or {}
    lat = location.get("lat")
    lng = location.get("lng")
    if lat is None or lng is None:
        return None, None
    return float(lat), float(lng)


class GooglePlacesClient(JsonHttpClient):
    provider = "google_places"

    def __init__(self, settings: PlacesSettings) -> None:
        if not settings.api_key:
            raise ConfigError("Google Maps API key is required (GOOGLE_MAPS_API_KEY)")
        super().__init__(timeout=settings.timeout_s)
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")

    def _raise_for_api_status(self, status: str, context: str, data: dict[str, Any]) -> None:
        message = data.get("error_message") or ""
        if status == "OVER_QUERY_LIMIT":
            logger.warning("Places quota exceeded during %s", context)
            raise TransientProviderError(
                f"Places {context}: OVER_QUERY_LIMIT {message}".strip(),
                provider=self.provider,
                rate_limited=True,
            )
        raise TransientProviderError(
            f"Places {context}: {status or 'no status'} {message}".strip(),
            provider=self.provider,
        )

    def find_by_text(
        self,
        query: str,
        input_type: str = "textquery",
        fields: tuple[str, ...] = FIND_FIELDS,
    ) -> list[PlaceCandidate]:
        """Ranked candidates for a free-text query (best first)."""
        data = self.request_json(
            "GET",
            f"{self.base_url}/findplacefromtext/json",
            params={
                "input": query,
                "inputtype": input_type,
                "fields": ",".join(fields),
                "key": self.settings.api_key,
            },
        )
        status = data.get("status", "")
        if status == "ZERO_RESULTS":
            logger.debug("No candidates for %r", query)
            return []
        if status != "OK":
            self._raise_for_api_status(status, "find place", data)

        return [
            PlaceCandidate.from_api(c)
            for c in data.get("candidates") or []
            if c.get("place_id")
        ]

    def get_details(
        self,
        place_id: str,
        fields: tuple[str, ...] = DETAILS_FIELDS,
    ) -> PlaceDetails | None:
        """
        Details for a place id.  Returns None when the provider says the id
        does not exist or is malformed.
        """
        data = self.request_json(
            "GET",
            f"{self.base_url}/details/json",
            params={
                "place_id": place_id,
                "fields": ",".join(fields),
                "key": self.settings.api_key,
            },
        )
        status = data.get("status", "")
        if status in _UNUSABLE_ID_STATUSES:
            logger.info("Place id %s rejected by provider (%s)", place_id, status)
            return None
        if status != "OK" or not data.get("result"):
            self._raise_for_api_status(status, "details", data)

        return PlaceDetails.from_api(data["result"], place_id)

    def photo_url(self, reference: str, max_width: int | None = None) -> str:
        """
        Public image URL for a photo reference.

        The photo endpoint answers with a redirect to the image itself; the
        redirect target is returned so the API key never reaches the store.
        """
        url = f"{self.base_url}/photo"
        response = self._send(
            "GET",
            url,
            params={
                "maxwidth": max_width or self.settings.photo_max_width,
                "photo_reference": reference,
                "key": self.settings.api_key,
            },
            allow_redirects=False,
        )
        location = response.headers.get("Location", "")
        if response.status_code in (301, 302, 303, 307, 308) and location:
            return location
        self._raise_for_status(response, "GET", url)
        raise TransientProviderError(
            f"Places photo {reference!r}: no redirect (HTTP {response.status_code})",
            provider=self.provider,
            status_code=response.status_code,
        )
