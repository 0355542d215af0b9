"""
Atlas Building Registry — Geospatial Proximity

Great-circle distance between building coordinates using the Haversine
formula, plus the cheap degree-box checks used to pre-filter candidates
before the exact distance is computed.

No external geo-libraries required — pure math with stdlib.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M = 6_371_000.0

# ~500 m at the equator; used for grounding-evidence coordinate matching
DEFAULT_DEGREE_TOLERANCE = 0.0045


@dataclass(frozen=True)
class Coordinates:
    """A WGS84 coordinate pair."""
    lat: float
    lng: float

    def is_valid(self) -> bool:
        """Both parts finite and inside the WGS84 ranges."""
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )

    def is_null_island(self) -> bool:
        """Exactly (0, 0): the store value when coordinates were never set."""
        return self.lat == 0 and self.lng == 0


# ---------------------------------------------------------------------------
# Core distance calculation
# ---------------------------------------------------------------------------


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """
    Compute the great-circle distance in metres between two WGS84 points
    using the Haversine formula.

    NaN inputs propagate to a NaN result; callers validate first.
    """
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_M * c


# ---------------------------------------------------------------------------
# Candidate filtering
# ---------------------------------------------------------------------------


def bounding_box(
    target: Coordinates,
    radius_m: float,
) -> tuple[float, float, float, float]:
    """
    Return a lat/lng bounding box that encloses a circle of the given radius
    around the target coordinate.

    Returns (min_lat, max_lat, min_lng, max_lng) in degrees.
    """
    lat_delta = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = math.cos(math.radians(target.lat))
    # Near the poles every longitude is within reach
    lng_delta = 180.0 if cos_lat < 1e-9 else lat_delta / cos_lat

    return (
        target.lat - lat_delta,
        target.lat + lat_delta,
        target.lng - lng_delta,
        target.lng + lng_delta,
    )


def in_bounding_box(
    point: Coordinates,
    box: tuple[float, float, float, float],
) -> bool:
    min_lat, max_lat, min_lng, max_lng = box
    return min_lat <= point.lat <= max_lat and min_lng <= point.lng <= max_lng


def within_degrees(
    a: Coordinates,
    b: Coordinates,
    tolerance: float = DEFAULT_DEGREE_TOLERANCE,
) -> bool:
    """True when both the latitude and longitude differences are under tolerance."""
    return abs(a.lat - b.lat) < tolerance and abs(a.lng - b.lng) < tolerance
