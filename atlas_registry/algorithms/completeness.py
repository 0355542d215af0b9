"""
Atlas Building Registry — Record Completeness Score

A heuristic count of populated fields, used only to pick which member of a
duplicate group survives.  Description, image and place id are worth three
points each; every other counted field is worth one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..models import Record


# Fields worth a point when present
COUNTED_FIELDS = (
    "city",
    "country",
    "lat",
    "lng",
    "place_id",
    "image_url",
    "description",
    "location",
    "style",
    "architect",
)

# Extra points on top of the base point
BONUS_FIELDS = {
    "description": 2,
    "image_url": 2,
    "place_id": 2,
}


def _present(value: Any) -> bool:
    # The store holds "0" / 0 for never-set values
    if value is None:
        return False
    if isinstance(value, str):
        value = value.strip()
        return value not in ("", "0")
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def _field_value(record: "Record", name: str) -> Any:
    if name in ("lat", "lng"):
        coords = record.coordinates
        return getattr(coords, name) if coords is not None else None
    return getattr(record, name, None)


def score(record: "Record") -> int:
    """
    Completeness score of a record.

    Adding a previously empty field never lowers the score.
    """
    total = 0
    for name in COUNTED_FIELDS:
        if _present(_field_value(record, name)):
            total += 1 + BONUS_FIELDS.get(name, 0)
    return total
