"""Tests for atlas_registry.place_resolver."""

import pytest

from atlas_registry.algorithms.geo_proximity import Coordinates
from atlas_registry.discovery import DiscoveryCandidate, GroundingEvidence
from atlas_registry.errors import TransientProviderError
from atlas_registry.models import Record
from atlas_registry.place_resolver import (
    PlaceResolver,
    ReconciledCandidate,
    ResolutionState,
    build_map_url,
    build_search_query,
    clean_place_id,
    extract_place_id,
    first_poi_candidate,
    reconcile_candidate,
)
from atlas_registry.places import PlaceCandidate, PlaceDetails


CHRYSLER = Coordinates(40.7516, -73.9755)
QUERY = "Chrysler Building, 405 Lexington Ave, New York"


def _candidate(name="Chrysler Building", lat=40.7510, lng=-73.9750, **kwargs):
    kwargs.setdefault("location", "405 Lexington Ave, New York")
    return DiscoveryCandidate(name=name, lat=lat, lng=lng, **kwargs)


def _reconciled(place_id="", state=ResolutionState.NONE, **kwargs):
    return ReconciledCandidate(
        name="Chrysler Building",
        coordinates=CHRYSLER,
        location="405 Lexington Ave, New York",
        place_id=place_id,
        state=state,
        **kwargs,
    )


def _poi(place_id, name="Chrysler Building"):
    return PlaceCandidate(place_id=place_id, name=name, types=["point_of_interest", "establishment"])


def _address(place_id):
    return PlaceCandidate(place_id=place_id, name="405 Lexington Ave", types=["street_address"])


def _details(place_id, types=("point_of_interest",), url="", photos=()):
    return PlaceDetails(
        place_id=place_id,
        types=list(types),
        canonical_url=url,
        photo_references=list(photos),
    )


def _record(**kwargs):
    kwargs.setdefault("name", "Chrysler Building")
    kwargs.setdefault("coordinates", CHRYSLER)
    kwargs.setdefault("location", "405 Lexington Ave, New York")
    return Record(id="7", **kwargs)


# ---- helpers ----------------------------------------------------------------


class TestHelpers:
    def test_clean_place_id(self):
        assert clean_place_id("places/ChIJ1") == "ChIJ1"
        assert clean_place_id(" ChIJ1 ") == "ChIJ1"
        assert clean_place_id(None) == ""

    @pytest.mark.parametrize("uri, expected", [
        ("https://www.google.com/maps/search/?api=1&query=x&query_place_id=ChIJ1", "ChIJ1"),
        ("https://maps.google.com/place/ChIJ2?hl=en", "ChIJ2"),
        ("https://maps.google.com/?place_id=ChIJ3&hl=en", "ChIJ3"),
        ("https://maps.google.com/?cid=123", None),
        ("", None),
        (None, None),
    ])
    def test_extract_place_id(self, uri, expected):
        assert extract_place_id(uri) == expected

    def test_search_query(self):
        assert build_search_query("Chrysler Building", "405 Lexington Ave") == "Chrysler Building, 405 Lexington Ave"
        assert build_search_query("Chrysler Building", "", "New York", "USA") == "Chrysler Building, New York USA"
        assert build_search_query("Chrysler Building") == "Chrysler Building"
        assert build_search_query("") == ""

    def test_first_poi_skips_addresses(self):
        assert first_poi_candidate([_address("a"), _poi("b")]).place_id == "b"
        assert first_poi_candidate([_address("a")]) is None

    def test_first_poi_accepts_ambiguous(self):
        bakery = PlaceCandidate(place_id="c", types=["bakery"])
        assert first_poi_candidate([bakery]) is bakery


class TestBuildMapUrl:
    def test_place_id_first(self):
        url = build_map_url("Chrysler Building", place_id="ChIJ1", uri="https://maps.google.com/?cid=1")
        assert url == (
            "https://www.google.com/maps/search/?api=1"
            "&query=Chrysler%20Building&query_place_id=ChIJ1"
        )

    def test_uri_with_place_id(self):
        uri = "https://maps.google.com/place/ChIJ2"
        assert build_map_url("Chrysler Building", uri=uri, location="New York") == uri

    def test_search_query(self):
        url = build_map_url("Chrysler Building", uri="https://maps.google.com/?cid=1", location="New York")
        assert url == "https://www.google.com/maps/search/?api=1&query=Chrysler%20Building%2C%20New%20York"

    def test_raw_uri_then_coordinates(self):
        assert build_map_url("", uri="https://maps.google.com/?cid=1") == "https://maps.google.com/?cid=1"
        assert build_map_url("", coordinates=Coordinates(40.75, -73.97)) == "https://www.google.com/maps?q=40.75,-73.97"
        assert build_map_url("") == ""


# ---- reconcile_candidate ----------------------------------------------------


class TestReconcile:
    def test_name_match_overwrites_coordinates(self):
        evidence = [GroundingEvidence(
            title="Chrysler Building",
            uri="https://maps.google.com/?cid=1",
            placeId="places/ChIJchrysler",
            lat=CHRYSLER.lat,
            lng=CHRYSLER.lng,
        )]
        reconciled = reconcile_candidate(_candidate("The Chrysler Building"), evidence)

        assert reconciled.matched_by == "name"
        assert reconciled.coordinates == CHRYSLER
        assert reconciled.place_id == "ChIJchrysler"
        assert reconciled.state is ResolutionState.CANDIDATE_ID
        assert reconciled.map_url.endswith("&query_place_id=ChIJchrysler")

    def test_name_match_wins_over_earlier_coordinate_match(self):
        nearby = GroundingEvidence(title="Grand Hyatt", lat=40.7511, lng=-73.9751, placeId="ChIJhyatt")
        named = GroundingEvidence(title="Chrysler Building", lat=CHRYSLER.lat, lng=CHRYSLER.lng)
        reconciled = reconcile_candidate(_candidate(), [nearby, named])
        assert reconciled.matched_by == "name"
        assert reconciled.place_id == ""
        assert reconciled.state is ResolutionState.NONE

    def test_coordinate_match_keeps_own_position(self):
        chunk = GroundingEvidence(
            title="Tower at 405 Lexington",
            uri="https://maps.google.com/place/ChIJtower",
            lat=40.7530,
            lng=-73.9760,
        )
        candidate = _candidate()
        reconciled = reconcile_candidate(candidate, [chunk])

        assert reconciled.matched_by == "coordinates"
        assert reconciled.coordinates == candidate.coordinates
        assert reconciled.place_id == "ChIJtower"

    def test_no_evidence(self):
        reconciled = reconcile_candidate(_candidate(), [])
        assert reconciled.matched_by is None
        assert reconciled.state is ResolutionState.NONE
        assert reconciled.map_url.startswith("https://www.google.com/maps/search/?api=1&query=Chrysler")

    def test_far_evidence_ignored(self):
        chunk = GroundingEvidence(title="Empire State Building", lat=40.7484, lng=-73.9857, placeId="ChIJesb")
        assert reconcile_candidate(_candidate(), [chunk]).place_id == ""


# ---- resolve_identifier -----------------------------------------------------


class TestResolveIdentifier:
    def test_search_then_details(self, places):
        places.search_results[QUERY] = [_address("ChIJaddr"), _poi("ChIJpoi")]
        places.details["ChIJpoi"] = _details("ChIJpoi", url="https://maps.google.com/?cid=9", photos=["ref1"])

        resolved = PlaceResolver(places).resolve_identifier(_reconciled())

        assert resolved.state is ResolutionState.RESOLVED
        assert resolved.place_id == "ChIJpoi"
        assert resolved.map_url == "https://maps.google.com/?cid=9"
        assert resolved.image_url == "https://photos.example/ref1"

    def test_candidate_id_verified(self, places):
        places.details["ChIJev"] = _details("ChIJev")
        resolved = PlaceResolver(places).resolve_identifier(_reconciled("ChIJev", ResolutionState.CANDIDATE_ID))
        assert resolved.state is ResolutionState.RESOLVED
        assert resolved.map_url.endswith("&query_place_id=ChIJev")
        assert ("find", QUERY) not in places.calls

    def test_rejected_id_discarded_then_searched(self, places):
        places.search_results[QUERY] = [_poi("ChIJnew")]
        places.details["ChIJnew"] = _details("ChIJnew")
        candidate = _reconciled("ChIJstale", ResolutionState.CANDIDATE_ID,
                                evidence_uri="https://maps.google.com/place/ChIJstale")

        resolved = PlaceResolver(places).resolve_identifier(candidate)

        assert resolved.state is ResolutionState.RESOLVED
        assert resolved.place_id == "ChIJnew"
        assert resolved.evidence_uri == ""
        assert places.calls == [("details", "ChIJstale"), ("find", QUERY), ("details", "ChIJnew")]

    def test_rejected_twice_is_unresolved(self, places):
        places.search_results[QUERY] = [_poi("ChIJalso_bad")]
        candidate = _reconciled("ChIJstale", ResolutionState.CANDIDATE_ID)

        resolved = PlaceResolver(places).resolve_identifier(candidate)

        assert resolved.state is ResolutionState.UNRESOLVED
        assert resolved.place_id == ""
        assert places.calls.count(("find", QUERY)) == 1

    def test_nothing_found_is_unresolved(self, places):
        places.search_results[QUERY] = [_address("ChIJaddr")]
        resolved = PlaceResolver(places).resolve_identifier(_reconciled())
        assert resolved.state is ResolutionState.UNRESOLVED

    def test_search_failure_keeps_state(self, places):
        places.search_results[QUERY] = TransientProviderError("boom", provider="google_places")
        resolved = PlaceResolver(places).resolve_identifier(_reconciled())
        assert resolved.state is ResolutionState.NONE

    def test_details_failure_keeps_candidate_id(self, places):
        places.details["ChIJev"] = TransientProviderError("quota", provider="google_places", rate_limited=True)
        resolved = PlaceResolver(places).resolve_identifier(_reconciled("ChIJev", ResolutionState.CANDIDATE_ID))
        assert resolved.state is ResolutionState.CANDIDATE_ID
        assert resolved.place_id == "ChIJev"

    def test_existing_image_kept(self, places):
        places.details["ChIJev"] = _details("ChIJev", photos=["ref1"])
        candidate = _reconciled("ChIJev", ResolutionState.CANDIDATE_ID, image_url="https://img/own.jpg")
        assert PlaceResolver(places).resolve_identifier(candidate).image_url == "https://img/own.jpg"

    def test_photo_failure_keeps_resolution(self, places, monkeypatch):
        def failing_photo_url(reference, max_width=None):
            raise TransientProviderError("HTTP 403", provider="google_places", status_code=403)

        monkeypatch.setattr(places, "photo_url", failing_photo_url)
        places.details["ChIJev"] = _details("ChIJev", photos=["ref1"])
        resolved = PlaceResolver(places).resolve_identifier(_reconciled("ChIJev", ResolutionState.CANDIDATE_ID))
        assert resolved.state is ResolutionState.RESOLVED
        assert resolved.place_id == "ChIJev"
        assert resolved.image_url == ""


# ---- validate_existing ------------------------------------------------------


class TestValidateExisting:
    def test_address_id_repaired(self, places):
        places.details["ChIJaddr"] = _details("ChIJaddr", types=["street_address"])
        places.search_results[QUERY] = [_address("ChIJaddr"), _poi("ChIJpoi")]
        places.details["ChIJpoi"] = _details("ChIJpoi", url="https://maps.google.com/?cid=42")

        result = PlaceResolver(places).validate_existing(_record(place_id="ChIJaddr"))

        assert result.status == "repaired"
        assert result.old_place_id == "ChIJaddr"
        assert result.changes == {"place_id": "ChIJpoi", "map_url": "https://maps.google.com/?cid=42"}

    def test_repaired_without_canonical_url(self, places):
        places.details["ChIJaddr"] = _details("ChIJaddr", types=["route"])
        places.search_results[QUERY] = [_poi("ChIJpoi")]

        result = PlaceResolver(places).validate_existing(_record(place_id="ChIJaddr"))

        assert result.changes["map_url"] == (
            "https://www.google.com/maps/search/?api=1"
            "&query=Chrysler%20Building&query_place_id=ChIJpoi"
        )

    def test_poi_untouched(self, places):
        places.details["ChIJpoi"] = _details("ChIJpoi", types=["tourist_attraction"])
        result = PlaceResolver(places).validate_existing(_record(place_id="ChIJpoi"))
        assert result.status == "unchanged_poi"
        assert not result.changed
        assert not [c for c in places.calls if c[0] == "find"]

    def test_ambiguous_untouched(self, places):
        places.details["ChIJamb"] = _details("ChIJamb", types=["bakery"])
        result = PlaceResolver(places).validate_existing(_record(place_id="ChIJamb"))
        assert result.status == "unchanged_ambiguous"
        assert result.detail == "bakery"

    def test_untagged_place_untouched(self, places, caplog):
        places.details["ChIJbare"] = _details("ChIJbare", types=[])
        with caplog.at_level("INFO", logger="atlas_registry.place_resolver"):
            result = PlaceResolver(places).validate_existing(_record(place_id="ChIJbare"))
        assert result.status == "unchanged_ambiguous"
        assert not result.changed
        assert not [c for c in places.calls if c[0] == "find"]
        assert "Ambiguous place types: (none)" in caplog.text

    def test_same_id_found_again(self, places):
        places.details["ChIJaddr"] = _details("ChIJaddr", types=["premise"])
        places.search_results[QUERY] = [
            PlaceCandidate(place_id="ChIJaddr", types=["premise", "point_of_interest"]),
        ]
        result = PlaceResolver(places).validate_existing(_record(place_id="ChIJaddr"))
        assert result.status == "no_candidate"

    def test_statuses(self, places):
        resolver = PlaceResolver(places)
        assert resolver.validate_existing(_record()).status == "no_place_id"
        assert resolver.validate_existing(_record(place_id="ChIJgone")).status == "not_found"

        places.details["ChIJaddr"] = _details("ChIJaddr", types=["route"])
        nameless = _record(name="", location="", place_id="ChIJaddr")
        assert resolver.validate_existing(nameless).status == "no_query"

    def test_result_to_dict(self, places):
        result = PlaceResolver(places).validate_existing(_record(place_id="ChIJgone"))
        assert result.to_dict() == {
            "record_id": "7",
            "name": "Chrysler Building",
            "status": "not_found",
            "old_place_id": "ChIJgone",
            "changes": {},
            "detail": "",
        }


# ---- backfill ---------------------------------------------------------------


class TestBackfillPlaceId:
    def test_backfilled_with_map_url(self, places):
        places.search_results[QUERY] = [_poi("ChIJpoi")]
        result = PlaceResolver(places).backfill_place_id(_record())
        assert result.status == "backfilled"
        assert result.changes["place_id"] == "ChIJpoi"
        assert result.changes["map_url"].endswith("&query_place_id=ChIJpoi")

    def test_existing_map_url_kept(self, places):
        places.search_results[QUERY] = [_poi("places/ChIJpoi")]
        result = PlaceResolver(places).backfill_place_id(_record(map_url="https://maps/own"))
        assert result.changes == {"place_id": "ChIJpoi"}

    def test_statuses(self, places):
        resolver = PlaceResolver(places)
        assert resolver.backfill_place_id(_record(place_id="ChIJ1")).status == "has_place_id"
        assert resolver.backfill_place_id(_record(name="", location="")).status == "no_query"
        assert resolver.backfill_place_id(_record()).status == "no_candidate"


class TestBackfillPhoto:
    def test_backfilled(self, places):
        places.details["ChIJ1"] = _details("ChIJ1", photos=["ref1", "ref2"])
        result = PlaceResolver(places).backfill_photo(_record(place_id="ChIJ1"))
        assert result.status == "backfilled"
        assert result.changes == {"image_url": "https://photos.example/ref1"}

    def test_statuses(self, places):
        resolver = PlaceResolver(places)
        assert resolver.backfill_photo(_record(image_urls=["https://img/1.jpg"])).status == "has_image"
        assert resolver.backfill_photo(_record()).status == "no_place_id"
        assert resolver.backfill_photo(_record(place_id="ChIJgone")).status == "not_found"

        places.details["ChIJbare"] = _details("ChIJbare")
        assert resolver.backfill_photo(_record(place_id="ChIJbare")).status == "no_photo"
