"""
Atlas Building Registry — Record model and store wire adapter

One explicit ``Record`` type for a building, plus the pure functions that
translate between it and the rows of the record store.  Everything the store
is loose about (numbers stored as strings, file fields as lists, legacy
markdown links, free-text comment slots) is absorbed here and nowhere else.

Store row fields (user field names):
    name, location, city, country, lat, lng, google_place_id, Gmaps_url,
    image_url, image_1..image_3, notes, style, architect, is_prioritized,
    is_hidden, favourites, has_purple_heart, source, comment_1..comment_6
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .algorithms.geo_proximity import Coordinates
from .algorithms.locality import derive_city_country
from .errors import ValidationError


MAX_COMMENTS = 6
MAX_IMAGES = 3

IMAGE_FILE_FIELDS = tuple(f"image_{i}" for i in range(1, MAX_IMAGES + 1))
COMMENT_FIELDS = tuple(f"comment_{i}" for i in range(1, MAX_COMMENTS + 1))

# Record attribute → store field, for plain scalar attributes
_SCALAR_FIELDS: dict[str, str] = {
    "name": "name",
    "location": "location",
    "city": "city",
    "country": "country",
    "place_id": "google_place_id",
    "map_url": "Gmaps_url",
    "description": "notes",
    "style": "style",
    "architect": "architect",
    "is_prioritized": "is_prioritized",
    "is_hidden": "is_hidden",
    "is_favourite": "favourites",
    "has_special_marker": "has_purple_heart",
    "source": "source",
}

_BOOL_ATTRS = {"is_prioritized", "is_hidden", "is_favourite", "has_special_marker"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Comment:
    """One user comment.  ``created_at`` is None only for legacy plain-text slots."""
    text: str
    created_at: str | None = None
    updated_at: str | None = None

    def to_wire(self) -> str:
        payload: dict[str, str] = {"text": self.text}
        if self.created_at:
            payload["createdAt"] = self.created_at
        if self.updated_at:
            payload["updatedAt"] = self.updated_at
        return json.dumps(payload, ensure_ascii=False)

    @classmethod
    def from_wire(cls, raw: Any) -> "Comment | None":
        if raw is None:
            return None
        text = str(raw).strip()
        if not text:
            return None
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("text"), str):
            return cls(
                text=payload["text"],
                created_at=payload.get("createdAt"),
                updated_at=payload.get("updatedAt"),
            )
        # Legacy slot holding bare text
        return cls(text=text)


def _check_comment_text(text: str) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text must not be empty")
    return text


def _check_comment_index(comments: list[Comment], index: int) -> None:
    if not 0 <= index < len(comments):
        raise ValidationError(
            f"Comment index {index} out of range (have {len(comments)})"
        )


def append_comment(
    comments: list[Comment],
    text: str,
    *,
    now: str | None = None,
) -> list[Comment]:
    """Return a new comment list with ``text`` appended."""
    if len(comments) >= MAX_COMMENTS:
        raise ValidationError(f"A building holds at most {MAX_COMMENTS} comments")
    return [*comments, Comment(text=_check_comment_text(text), created_at=now or utc_now_iso())]


def update_comment(
    comments: list[Comment],
    index: int,
    text: str,
    *,
    now: str | None = None,
) -> list[Comment]:
    """Return a new comment list with the comment at ``index`` rewritten."""
    _check_comment_index(comments, index)
    updated = list(comments)
    updated[index] = replace(
        comments[index],
        text=_check_comment_text(text),
        updated_at=now or utc_now_iso(),
    )
    return updated


def delete_comment(comments: list[Comment], index: int) -> list[Comment]:
    """Return a new comment list without the comment at ``index``; later ones shift down."""
    _check_comment_index(comments, index)
    return [c for i, c in enumerate(comments) if i != index]


def comment_fields(comments: list[Comment]) -> dict[str, str]:
    """Store fields for a full comment list; unused slots are cleared."""
    if len(comments) > MAX_COMMENTS:
        raise ValidationError(f"A building holds at most {MAX_COMMENTS} comments")
    out = {name: "" for name in COMMENT_FIELDS}
    for name, comment in zip(COMMENT_FIELDS, comments):
        out[name] = comment.to_wire()
    return out


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


@dataclass
class Record:
    """A building in the registry."""

    name: str
    coordinates: Coordinates | None
    id: str | None = None
    location: str = ""
    city: str = ""
    country: str = ""
    place_id: str = ""
    map_url: str = ""
    image_urls: list[str] = field(default_factory=list)
    style: str = ""
    architect: str = ""
    description: str = ""
    is_prioritized: bool = False
    is_hidden: bool = False
    is_favourite: bool = False
    has_special_marker: bool = False
    source: str = ""
    comments: list[Comment] = field(default_factory=list)

    @property
    def image_url(self) -> str:
        return self.image_urls[0] if self.image_urls else ""

    @property
    def styles(self) -> list[str]:
        return [s.strip() for s in self.style.split(",") if s.strip()]

    @property
    def primary_style(self) -> str:
        styles = self.styles
        return styles[0] if styles else ""

    @property
    def has_usable_coordinates(self) -> bool:
        return (
            self.coordinates is not None
            and self.coordinates.is_valid()
            and not self.coordinates.is_null_island()
        )


def visible(records: list[Record]) -> list[Record]:
    """Drop soft-deleted records; every read path except duplicate checks uses this."""
    return [r for r in records if not r.is_hidden]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_coordinates(coordinates: Coordinates | None, *, name: str = "") -> Coordinates:
    label = f' for "{name}"' if name else ""
    if coordinates is None:
        raise ValidationError(f"Missing coordinates{label}")
    try:
        lat = float(coordinates.lat)
        lng = float(coordinates.lng)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Non-numeric coordinates{label}: {coordinates!r}") from exc
    checked = Coordinates(lat=lat, lng=lng)
    if not checked.is_valid():
        raise ValidationError(f"Invalid coordinates{label}: {lat}, {lng}")
    return checked


def validate_for_write(record: Record) -> None:
    """Raise ValidationError unless the record may be persisted."""
    if not (record.name or "").strip():
        raise ValidationError("Building name is required")
    validate_coordinates(record.coordinates, name=record.name)
    if len(record.image_urls) > MAX_IMAGES:
        raise ValidationError(f"A building holds at most {MAX_IMAGES} images")
    if len(record.comments) > MAX_COMMENTS:
        raise ValidationError(f"A building holds at most {MAX_COMMENTS} comments")


# ---------------------------------------------------------------------------
# Wire adapter: store row → Record
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _unwrap_markdown_link(value: str) -> str:
    """Legacy rows store some URLs as "[label](https://...)"; return the target."""
    if value.startswith("[") and value.endswith(")") and "](" in value:
        return value[value.index("](") + 2:-1].strip()
    return value


def _file_field_urls(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    urls = []
    for item in value:
        if isinstance(item, dict) and item.get("url"):
            urls.append(str(item["url"]))
    return urls


def _image_urls(row: dict[str, Any]) -> list[str]:
    urls: list[str] = []
    for name in IMAGE_FILE_FIELDS:
        urls.extend(_file_field_urls(row.get(name)))
    legacy = _unwrap_markdown_link(_text(row.get("image_url")))
    if legacy:
        urls.append(legacy)

    unique: list[str] = []
    for url in urls:
        if url not in unique:
            unique.append(url)
    return unique[:MAX_IMAGES]


def record_from_row(row: dict[str, Any]) -> Record:
    """Map a raw store row onto a Record.  Never raises on messy data."""
    lat = _parse_float(row.get("lat"))
    lng = _parse_float(row.get("lng"))
    coordinates = None
    if lat is not None and lng is not None:
        candidate = Coordinates(lat=lat, lng=lng)
        coordinates = candidate if candidate.is_valid() else None

    city = _text(row.get("city"))
    country = _text(row.get("country"))
    location = _text(row.get("location"))

    comments = []
    for name in COMMENT_FIELDS:
        comment = Comment.from_wire(row.get(name))
        if comment is not None:
            comments.append(comment)

    return Record(
        id=_text(row.get("id")) or None,
        name=_text(row.get("name")),
        coordinates=coordinates,
        location=location,
        city=city,
        country=country,
        place_id=_text(row.get("google_place_id")),
        map_url=_unwrap_markdown_link(_text(row.get("Gmaps_url"))),
        image_urls=_image_urls(row),
        style=_text(row.get("style")),
        architect=_text(row.get("architect")),
        description=_text(row.get("notes")),
        is_prioritized=bool(row.get("is_prioritized")),
        is_hidden=bool(row.get("is_hidden")),
        is_favourite=bool(row.get("favourites")),
        has_special_marker=bool(row.get("has_purple_heart")),
        source=_text(row.get("source")),
        comments=comments,
    )


# ---------------------------------------------------------------------------
# Wire adapter: Record → store fields
# ---------------------------------------------------------------------------


def row_from_record(record: Record) -> dict[str, Any]:
    """
    Full store payload for creating a record.

    Validates first; city and country are derived from the location when
    absent.
    """
    validate_for_write(record)
    city, country = derive_city_country(record.location, record.city, record.country)
    populated = replace(record, city=city, country=country)

    fields: dict[str, Any] = {}
    for attr, wire in _SCALAR_FIELDS.items():
        value = getattr(populated, attr)
        fields[wire] = bool(value) if attr in _BOOL_ATTRS else (value or "")
    fields["lat"] = str(float(record.coordinates.lat))
    fields["lng"] = str(float(record.coordinates.lng))
    fields["image_url"] = populated.image_url
    fields.update(comment_fields(populated.comments))
    return fields


def row_patch(changes: dict[str, Any], *, name: str = "") -> dict[str, Any]:
    """
    Translate a partial change set keyed by Record attribute names into
    store fields.  Coordinates are validated; unknown attributes raise.

        row_patch({"place_id": "ChIJ...", "map_url": "https://..."})
        → {"google_place_id": "ChIJ...", "Gmaps_url": "https://..."}
    """
    fields: dict[str, Any] = {}
    for attr, value in changes.items():
        if attr in _SCALAR_FIELDS:
            wire = _SCALAR_FIELDS[attr]
            fields[wire] = bool(value) if attr in _BOOL_ATTRS else (value or "")
        elif attr == "coordinates":
            checked = validate_coordinates(value, name=name)
            fields["lat"] = str(checked.lat)
            fields["lng"] = str(checked.lng)
        elif attr == "image_url":
            fields["image_url"] = value or ""
        elif attr == "comments":
            fields.update(comment_fields(value))
        else:
            raise ValidationError(f"Unknown record attribute: {attr}")
    if "name" in changes and not _text(changes["name"]):
        raise ValidationError("Building name is required")
    return fields
