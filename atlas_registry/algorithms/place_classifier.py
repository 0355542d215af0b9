"""
Atlas Building Registry — Place Type Classification

Decides whether a place-search result is a bare street address or a real
point of interest, based only on its type tags.  Historical rows sometimes
carry a place id that resolves to the street the building stands on; those
are the ids the repair sweep re-resolves.

Anything that is not clearly an address is left alone.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable

from ..errors import ClassificationAmbiguous


POI_TYPES = frozenset({
    "establishment",
    "point_of_interest",
    "museum",
    "church",
    "university",
    "stadium",
    "library",
    "government_office",
    "place_of_worship",
    "courthouse",
    "tourist_attraction",
    "city_hall",
})

ADDRESS_TYPES = frozenset({
    "street_address",
    "route",
    "premise",
    "subpremise",
    "postal_code",
    "neighborhood",
    "locality",
    "political",
    "administrative_area_level_1",
    "administrative_area_level_2",
    "country",
})


class PlaceKind(str, enum.Enum):
    ADDRESS_ONLY = "address_only"
    POI = "poi"
    AMBIGUOUS = "ambiguous"


def classify(types: Iterable[str] | None) -> PlaceKind:
    """
    Classify a place from its type tags.

        - any POI tag present                  → POI
        - every tag address-ish (and ≥ 1 tag)  → ADDRESS_ONLY
        - anything else, including no tags     → AMBIGUOUS
    """
    tags = {t for t in (types or ()) if t}

    if tags & POI_TYPES:
        return PlaceKind.POI
    if tags and tags <= ADDRESS_TYPES:
        return PlaceKind.ADDRESS_ONLY
    return PlaceKind.AMBIGUOUS


def is_address_only(types: Iterable[str] | None) -> bool:
    """True iff the place is only a street address (safe to re-resolve)."""
    return classify(types) is PlaceKind.ADDRESS_ONLY


def require_decisive(types: Iterable[str] | None) -> PlaceKind:
    """Like classify(), but raise ClassificationAmbiguous instead of AMBIGUOUS."""
    tags = list(types or ())
    kind = classify(tags)
    if kind is PlaceKind.AMBIGUOUS:
        raise ClassificationAmbiguous(tags)
    return kind
