"""Shared fixtures: in-memory fakes for the record store, place search and discovery."""

from __future__ import annotations

import pytest

from atlas_registry.discovery import DiscoveryResult
from atlas_registry.errors import TransientProviderError


class FakeRepository:
    """Dict-backed stand-in for BaserowRepository with injectable failures."""

    def __init__(self, rows=None):
        self.rows: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_patch: set[str] = set()
        self.fail_delete: set[str] = set()
        self._next_id = 1
        for row in rows or []:
            self.add(row)

    def add(self, row: dict) -> dict:
        row = dict(row)
        if "id" not in row:
            row["id"] = self._next_id
        self._next_id = max(self._next_id, int(row["id"])) + 1
        self.rows[str(row["id"])] = row
        return dict(row)

    def list_all(self):
        self.calls.append(("list_all",))
        for row in list(self.rows.values()):
            yield dict(row)

    def get(self, row_id):
        return dict(self.rows[str(row_id)])

    def create(self, fields):
        self.calls.append(("create", fields.get("name")))
        return self.add(fields)

    def patch(self, row_id, fields):
        self.calls.append(("patch", str(row_id), dict(fields)))
        if str(row_id) in self.fail_patch:
            raise TransientProviderError("patch failed", provider="fake", status_code=500)
        if str(row_id) not in self.rows:
            raise TransientProviderError("no such row", provider="fake", status_code=404)
        self.rows[str(row_id)].update(fields)
        return dict(self.rows[str(row_id)])

    def delete(self, row_id):
        self.calls.append(("delete", str(row_id)))
        if str(row_id) in self.fail_delete:
            raise TransientProviderError("delete failed", provider="fake", status_code=500)
        # Already-absent rows count as deleted
        self.rows.pop(str(row_id), None)
        return True

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("create", "patch", "delete")]


class FakePlaces:
    """Place search answering from canned tables; unknown ids are NOT_FOUND."""

    def __init__(self):
        self.search_results: dict[str, object] = {}
        self.details: dict[str, object] = {}
        self.calls: list[tuple] = []

    def find_by_text(self, query, input_type="textquery", fields=()):
        self.calls.append(("find", query))
        result = self.search_results.get(query, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def get_details(self, place_id, fields=()):
        self.calls.append(("details", place_id))
        result = self.details.get(place_id)
        if isinstance(result, Exception):
            raise result
        return result

    def photo_url(self, reference, max_width=None):
        return f"https://photos.example/{reference}"


class FakeDiscovery:
    def __init__(self, result: DiscoveryResult):
        self.result = result
        self.calls: list[tuple] = []

    def discover(self, query, origin=None):
        self.calls.append((query, origin))
        return self.result


class FakeGeocoder:
    def __init__(self, address="Unter den Linden, Berlin, Germany"):
        self.address = address
        self.calls = []

    def reverse(self, coordinates):
        self.calls.append(coordinates)
        return self.address


@pytest.fixture
def repo():
    return FakeRepository()


@pytest.fixture
def places():
    return FakePlaces()


@pytest.fixture
def sleeps():
    """Collects requested delays instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def discovery_for():
    """Build a discovery fake that answers every query with the given result."""
    return FakeDiscovery


@pytest.fixture
def make_repo():
    """Build a FakeRepository preloaded with rows."""
    return FakeRepository


# ---- HTTP --------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code: int, payload=None, raises_json: bool = False, text: str = "", headers=None):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self._payload = payload
        self._raises_json = raises_json
        self.text = text

    def json(self):
        if self._raises_json:
            raise ValueError("bad json")
        return self._payload


class Recorder:
    """Stands in for Session.request: replays responses in order and keeps the calls."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def response():
    """Build a fake requests response."""
    return FakeResponse


@pytest.fixture
def stub_http(monkeypatch):
    """Replace a client's session.request with a Recorder replaying the given responses."""

    def install(client, *responses) -> Recorder:
        recorder = Recorder(responses)
        monkeypatch.setattr(client.session, "request", recorder)
        return recorder

    return install
