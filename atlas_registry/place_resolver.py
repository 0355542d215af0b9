"""
Atlas Building Registry — Place Identifier Resolution

Everything that decides which external place a building is:

    validate_existing     re-resolve stored ids that point at a bare address
    reconcile_candidate   match a discovery candidate with grounding evidence
    resolve_identifier    drive a candidate to a canonical, verified place id
    backfill_place_id     find an id for a record that has none
    backfill_photo        take the place's first photo for a record without one

Identifier lifecycle of a discovered candidate:

    NONE ──text search──▶ CANDIDATE_ID ──details OK──▶ RESOLVED
      │                       │
      └──nothing found──▶ UNRESOLVED ◀──details rejects id, search finds nothing

The resolver only reads from place search.  It returns the changes to make;
the pipeline writes them.  A place classified as POI or ambiguous is never
replaced.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import quote

from .algorithms.geo_proximity import Coordinates, within_degrees
from .algorithms.place_classifier import PlaceKind, classify, require_decisive
from .discovery import DiscoveryCandidate, GroundingEvidence
from .errors import ClassificationAmbiguous, TransientProviderError
from .models import Record
from .places import PlaceCandidate, PlaceDetails

logger = logging.getLogger(__name__)


MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1"
MAPS_COORDINATES_URL = "https://www.google.com/maps?q={lat},{lng}"

REPAIR_DETAILS_FIELDS = ("place_id", "types", "name", "formatted_address", "url")
RESOLVE_DETAILS_FIELDS = ("place_id", "types", "name", "url", "photos")
PHOTO_DETAILS_FIELDS = ("place_id", "photos")

_PLACE_ID_IN_URI = re.compile(r"(?:place_id=|place/)([^&/?]+)")


# ---------------------------------------------------------------------------
# Identifier and URL helpers
# ---------------------------------------------------------------------------


def clean_place_id(place_id: str | None) -> str:
    """Strip the resource-name prefix the newer APIs put on ids."""
    pid = (place_id or "").strip()
    if pid.startswith("places/"):
        pid = pid[len("places/"):]
    return pid.strip()


def extract_place_id(uri: str | None) -> str | None:
    """
    Place id encoded in a Maps URI, if any.

        ".../maps/search/?api=1&query=x&query_place_id=ChIJ1"  → "ChIJ1"
        "https://maps.google.com/place/ChIJ2"                  → "ChIJ2"
    """
    if not uri:
        return None
    match = _PLACE_ID_IN_URI.search(uri)
    if not match:
        return None
    return clean_place_id(match.group(1)) or None


def build_search_query(name: str, location: str = "", city: str = "", country: str = "") -> str:
    """"name, location", or "name, city country" when the location is empty."""
    parts = []
    if name and name.strip():
        parts.append(name.strip())
    if location and location.strip():
        parts.append(location.strip())
    else:
        locality = f"{city or ''} {country or ''}".strip()
        if locality:
            parts.append(locality)
    return ", ".join(parts)


def build_map_url(
    name: str,
    *,
    place_id: str | None = None,
    uri: str | None = None,
    location: str = "",
    city: str = "",
    country: str = "",
    coordinates: Coordinates | None = None,
) -> str:
    """
    Best available Maps link, in order of preference:

        1. place id + name
        2. a grounding URI that already encodes a place id
        3. text search on name + location
        4. the raw grounding URI
        5. raw coordinates
    """
    if place_id:
        return f"{MAPS_SEARCH_URL}&query={quote(name or '')}&query_place_id={place_id}"
    if uri and ("place_id=" in uri or "place/" in uri):
        return uri
    query = build_search_query(name, location, city, country)
    if query:
        return f"{MAPS_SEARCH_URL}&query={quote(query)}"
    if uri:
        return uri
    if coordinates is not None:
        return MAPS_COORDINATES_URL.format(lat=coordinates.lat, lng=coordinates.lng)
    return ""


def first_poi_candidate(candidates: list[PlaceCandidate]) -> PlaceCandidate | None:
    """First ranked candidate that is not a bare address (ambiguous is accepted)."""
    for candidate in candidates:
        if classify(candidate.types) is not PlaceKind.ADDRESS_ONLY:
            return candidate
    return None


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class ResolutionState(str, enum.Enum):
    NONE = "none"
    CANDIDATE_ID = "candidate_id"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


@dataclass
class RepairResult:
    """Outcome for one stored record; ``changes`` is keyed by Record attribute."""

    record_id: str | None
    name: str
    status: str
    old_place_id: str = ""
    changes: dict[str, Any] = field(default_factory=dict)
    detail: str = ""

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "name": self.name,
            "status": self.status,
            "old_place_id": self.old_place_id,
            "changes": dict(self.changes),
            "detail": self.detail,
        }


@dataclass
class ReconciledCandidate:
    """A discovery candidate after grounding evidence and place search were applied."""

    name: str
    coordinates: Coordinates
    location: str = ""
    city: str = ""
    country: str = ""
    description: str = ""
    style: str = ""
    architect: str = ""
    is_prioritized: bool = False
    place_id: str = ""
    map_url: str = ""
    image_url: str = ""
    evidence_uri: str = ""
    matched_by: str | None = None  # "name" | "coordinates"
    state: ResolutionState = ResolutionState.NONE

    def to_record(self, source: str = "discovery") -> Record:
        return Record(
            name=self.name,
            coordinates=self.coordinates,
            location=self.location,
            city=self.city,
            country=self.country,
            place_id=self.place_id,
            map_url=self.map_url,
            image_urls=[self.image_url] if self.image_url else [],
            style=self.style,
            architect=self.architect,
            description=self.description,
            is_prioritized=self.is_prioritized,
            source=source,
        )


# ---------------------------------------------------------------------------
# Evidence matching
# ---------------------------------------------------------------------------


def _titles_overlap(title: str, name: str) -> bool:
    title = (title or "").strip().lower()
    name = (name or "").strip().lower()
    if not title or not name:
        return False
    return title in name or name in title


def match_evidence(
    candidate: DiscoveryCandidate,
    evidence: list[GroundingEvidence],
) -> tuple[GroundingEvidence | None, str | None]:
    """Name match over all chunks first, then a ~500 m coordinate match."""
    for chunk in evidence:
        if _titles_overlap(chunk.title, candidate.name):
            return chunk, "name"
    for chunk in evidence:
        coords = chunk.coordinates
        if coords is not None and within_degrees(coords, candidate.coordinates):
            return chunk, "coordinates"
    return None, None


def reconcile_candidate(
    candidate: DiscoveryCandidate,
    evidence: list[GroundingEvidence],
) -> ReconciledCandidate:
    """
    Combine a model-proposed building with the grounding chunk that backs it.

    Only a name match moves the coordinates; a coordinate match contributes
    the place id and URI but keeps the candidate's own position.
    """
    chunk, matched_by = match_evidence(candidate, evidence)

    coordinates = candidate.coordinates
    place_id = ""
    uri = ""
    if chunk is not None:
        uri = chunk.uri or ""
        if matched_by == "name" and chunk.coordinates is not None:
            coordinates = chunk.coordinates
        place_id = clean_place_id(chunk.place_id) or extract_place_id(uri) or ""

    reconciled = ReconciledCandidate(
        name=candidate.name,
        coordinates=coordinates,
        location=candidate.location,
        city=candidate.city,
        country=candidate.country,
        description=candidate.description,
        style=candidate.style,
        architect=candidate.architect,
        is_prioritized=candidate.is_prioritized,
        place_id=place_id,
        evidence_uri=uri,
        matched_by=matched_by,
        state=ResolutionState.CANDIDATE_ID if place_id else ResolutionState.NONE,
    )
    reconciled.map_url = _map_url_for(reconciled)
    return reconciled


def _map_url_for(candidate: ReconciledCandidate) -> str:
    return build_map_url(
        candidate.name,
        place_id=candidate.place_id or None,
        uri=candidate.evidence_uri or None,
        location=candidate.location,
        city=candidate.city,
        country=candidate.country,
        coordinates=candidate.coordinates,
    )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class PlaceResolver:
    def __init__(self, places) -> None:
        self.places = places

    # ------------------------------------------------------------------
    # Discovery candidates
    # ------------------------------------------------------------------

    def _search(self, candidate: ReconciledCandidate) -> ReconciledCandidate:
        query = build_search_query(
            candidate.name, candidate.location, candidate.city, candidate.country,
        )
        if not query:
            return replace(candidate, state=ResolutionState.UNRESOLVED)
        try:
            found = first_poi_candidate(self.places.find_by_text(query))
        except TransientProviderError as exc:
            logger.warning("Place search failed for \"%s\": %s", candidate.name, exc)
            return candidate

        if found is None:
            logger.info("No place found for \"%s\"", candidate.name)
            return replace(candidate, state=ResolutionState.UNRESOLVED)

        searched = replace(
            candidate,
            place_id=clean_place_id(found.place_id),
            state=ResolutionState.CANDIDATE_ID,
        )
        searched.map_url = _map_url_for(searched)
        return searched

    def _adopt(self, candidate: ReconciledCandidate, details: PlaceDetails) -> ReconciledCandidate:
        place_id = clean_place_id(details.place_id) or candidate.place_id
        resolved = replace(candidate, place_id=place_id, state=ResolutionState.RESOLVED)
        resolved.map_url = details.canonical_url or _map_url_for(resolved)
        if not resolved.image_url and details.first_photo_reference:
            try:
                resolved.image_url = self.places.photo_url(details.first_photo_reference)
            except TransientProviderError as exc:
                logger.warning("Photo lookup failed for \"%s\": %s", resolved.name, exc)
        return resolved

    def resolve_identifier(self, candidate: ReconciledCandidate) -> ReconciledCandidate:
        """
        Advance a candidate through the identifier lifecycle.

        A rejected id is discarded and text search is tried once.  A
        transient provider failure leaves the state where it was.
        """
        current = candidate
        searched = False
        if current.state is ResolutionState.NONE:
            current = self._search(current)
            searched = True

        while current.state is ResolutionState.CANDIDATE_ID:
            try:
                details = self.places.get_details(current.place_id, RESOLVE_DETAILS_FIELDS)
            except TransientProviderError as exc:
                logger.warning(
                    "Details lookup failed for \"%s\" (%s): %s",
                    current.name, current.place_id, exc,
                )
                return current

            if details is not None:
                return self._adopt(current, details)

            logger.info("Discarding rejected place id %s for \"%s\"", current.place_id, current.name)
            discarded = replace(current, place_id="", evidence_uri="", state=ResolutionState.NONE)
            discarded.map_url = _map_url_for(discarded)
            if searched:
                return replace(discarded, state=ResolutionState.UNRESOLVED)
            current = self._search(discarded)
            searched = True

        return current

    # ------------------------------------------------------------------
    # Stored records
    # ------------------------------------------------------------------

    def validate_existing(self, record: Record) -> RepairResult:
        """
        Replace a stored place id that points at a bare address with the
        first POI found for the building's name and location.
        """
        result = RepairResult(record_id=record.id, name=record.name, status="", old_place_id=record.place_id)
        if not record.place_id:
            result.status = "no_place_id"
            return result

        details = self.places.get_details(record.place_id, REPAIR_DETAILS_FIELDS)
        if details is None:
            result.status = "not_found"
            return result

        try:
            kind = require_decisive(details.types)
        except ClassificationAmbiguous as exc:
            logger.info("Leaving \"%s\" alone: %s", record.name, exc)
            result.status = "unchanged_ambiguous"
            result.detail = ",".join(exc.types)
            return result
        if kind is PlaceKind.POI:
            result.status = "unchanged_poi"
            return result

        query = build_search_query(record.name, record.location, record.city, record.country)
        if not query:
            result.status = "no_query"
            return result

        found = first_poi_candidate(self.places.find_by_text(query))
        if found is None or clean_place_id(found.place_id) == record.place_id:
            result.status = "no_candidate"
            result.detail = query
            return result

        new_id = clean_place_id(found.place_id)
        new_details = self.places.get_details(new_id, REPAIR_DETAILS_FIELDS)
        map_url = (
            new_details.canonical_url
            if new_details is not None and new_details.canonical_url
            else build_map_url(record.name, place_id=new_id)
        )
        result.status = "repaired"
        result.changes = {"place_id": new_id, "map_url": map_url}
        result.detail = found.name
        return result

    def backfill_place_id(self, record: Record) -> RepairResult:
        result = RepairResult(record_id=record.id, name=record.name, status="", old_place_id=record.place_id)
        if record.place_id:
            result.status = "has_place_id"
            return result

        query = build_search_query(record.name, record.location, record.city, record.country)
        if not query:
            result.status = "no_query"
            return result

        found = first_poi_candidate(self.places.find_by_text(query))
        if found is None:
            result.status = "no_candidate"
            result.detail = query
            return result

        new_id = clean_place_id(found.place_id)
        result.status = "backfilled"
        result.changes = {"place_id": new_id}
        if not record.map_url:
            result.changes["map_url"] = build_map_url(record.name, place_id=new_id)
        return result

    def backfill_photo(self, record: Record) -> RepairResult:
        result = RepairResult(record_id=record.id, name=record.name, status="", old_place_id=record.place_id)
        if record.image_url:
            result.status = "has_image"
            return result
        if not record.place_id:
            result.status = "no_place_id"
            return result

        details = self.places.get_details(record.place_id, PHOTO_DETAILS_FIELDS)
        if details is None:
            result.status = "not_found"
            return result
        reference = details.first_photo_reference
        if not reference:
            result.status = "no_photo"
            return result

        result.status = "backfilled"
        result.changes = {"image_url": self.places.photo_url(reference)}
        return result
