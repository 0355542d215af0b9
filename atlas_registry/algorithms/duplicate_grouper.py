"""
Atlas Building Registry — Duplicate Grouping

Finds records that denote the same physical building.

Two policies:

    batch dedup (group)          similarity ≥ 0.75 or exact name, and < 300 m
    insertion check (find_existing)
                                 similarity ≥ 0.6 and < 500 m,
                                 or exact name and < 1000 m,
                                 or identical place id

Grouping is star-shaped: each unvisited record seeds a group and collects
the later records that match the seed directly.  A chain A~B~C where A and C
do not match can therefore take a second sweep to fully collapse.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .geo_proximity import bounding_box, distance_meters, in_bounding_box
from .locality import derive_city_country
from .name_similarity import (
    edit_similarity,
    exact_match,
    shares_significant_portion,
    similarity,
)

if TYPE_CHECKING:
    from ..models import Record

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DuplicateThresholds:
    """Similarity / distance thresholds; distances are strict upper bounds in metres."""

    batch_similarity: float = 0.75
    batch_distance_m: float = 300.0
    insert_similarity: float = 0.6
    insert_distance_m: float = 500.0
    insert_exact_distance_m: float = 1000.0
    alias_distance_m: float = 10_000.0
    review_edit_similarity: float = 0.85

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "DuplicateThresholds":
        defaults = cls()
        raw = raw or {}
        return cls(**{
            name: float(raw.get(name, getattr(defaults, name)))
            for name in cls.__dataclass_fields__
        })


@dataclass(frozen=True)
class ExceptionRule:
    """
    Buildings that must never be merged with each other, even when their
    names and positions look alike.

    A record matches when its country contains one of ``countries``, its city
    contains one of ``cities`` and its name contains one of ``keywords``
    (all compared lowercase).
    """

    label: str
    countries: tuple[str, ...]
    cities: tuple[str, ...]
    keywords: tuple[str, ...]

    def matches(self, record: "Record") -> bool:
        city, country = derive_city_country(record.location, record.city, record.country)
        city = city.lower()
        country = country.lower()
        name = (record.name or "").lower()

        if not any(c in country for c in self.countries):
            return False
        if not any(c in city for c in self.cities):
            return False
        return any(k in name for k in self.keywords)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ExceptionRule":
        return cls(
            label=str(raw.get("label", "exception")),
            countries=tuple(str(c).lower() for c in raw.get("countries", ())),
            cities=tuple(str(c).lower() for c in raw.get("cities", ())),
            keywords=tuple(str(k).lower() for k in raw.get("keywords", ())),
        )


# Moscow's Stalinist high-rises: several stand close together with similar names
SEVEN_SISTERS = ExceptionRule(
    label="seven_sisters",
    countries=("russia", "россия"),
    cities=("moscow", "москва"),
    keywords=(
        "ministry",
        "ministry of foreign affairs",
        "hotel ukraina",
        "hotel leningradskaya",
        "kotelnicheskaya",
        "kudrinskaya",
        "red gates",
        "seven sisters",
        "stalinist",
        "высотка",
        "сталинская",
    ),
)

DEFAULT_EXCEPTION_RULES = (SEVEN_SISTERS,)


def is_named_exception(
    record: "Record",
    rules: Iterable[ExceptionRule] = DEFAULT_EXCEPTION_RULES,
) -> bool:
    return any(rule.matches(record) for rule in rules)


# ---------------------------------------------------------------------------
# Pure decision predicates
# ---------------------------------------------------------------------------


def is_batch_duplicate(
    name_score: float,
    names_exact: bool,
    distance_m: float,
    thresholds: DuplicateThresholds = DuplicateThresholds(),
) -> bool:
    """Batch-dedup rule on precomputed signals."""
    if not distance_m < thresholds.batch_distance_m:
        return False
    return names_exact or name_score >= thresholds.batch_similarity


def is_insert_duplicate(
    name_score: float,
    names_exact: bool,
    distance_m: float,
    thresholds: DuplicateThresholds = DuplicateThresholds(),
) -> bool:
    """Insertion-check rule on precomputed signals."""
    if name_score >= thresholds.insert_similarity and distance_m < thresholds.insert_distance_m:
        return True
    return names_exact and distance_m < thresholds.insert_exact_distance_m


# ---------------------------------------------------------------------------
# Review report
# ---------------------------------------------------------------------------


@dataclass
class ReviewPair:
    """Two records that look related but were not grouped."""

    record_a_id: str | None
    record_b_id: str | None
    name_a: str
    name_b: str
    distance_m: float
    edit_similarity: float
    reason: str  # "edit_distance" | "shared_base_name"

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_a_id": self.record_a_id,
            "record_b_id": self.record_b_id,
            "name_a": self.name_a,
            "name_b": self.name_b,
            "distance_m": round(self.distance_m, 1),
            "edit_similarity": round(self.edit_similarity, 4),
            "reason": self.reason,
        }


# ---------------------------------------------------------------------------
# Grouper
# ---------------------------------------------------------------------------


@dataclass
class DuplicateGrouper:
    thresholds: DuplicateThresholds = field(default_factory=DuplicateThresholds)
    exception_rules: tuple[ExceptionRule, ...] = DEFAULT_EXCEPTION_RULES

    def _is_exception(self, record: "Record") -> bool:
        return is_named_exception(record, self.exception_rules)

    def is_duplicate_pair(self, a: "Record", b: "Record") -> bool:
        """Batch rule for two records, exception rule and coordinate checks included."""
        if not (a.has_usable_coordinates and b.has_usable_coordinates):
            return False
        if self._is_exception(a) or self._is_exception(b):
            return False
        return is_batch_duplicate(
            similarity(a.name, b.name),
            exact_match(a.name, b.name),
            distance_meters(a.coordinates, b.coordinates),
            self.thresholds,
        )

    def group(self, records: Sequence["Record"]) -> list[list["Record"]]:
        """
        Partition records into duplicate groups of size ≥ 2.

        Groups come out in input order; the seed is always the group's first
        member.
        """
        visited: set[int] = set()
        groups: list[list[Record]] = []

        for i, seed in enumerate(records):
            if i in visited:
                continue
            visited.add(i)
            if not seed.has_usable_coordinates or self._is_exception(seed):
                continue

            members = [seed]
            for j in range(i + 1, len(records)):
                if j in visited:
                    continue
                if self.is_duplicate_pair(seed, records[j]):
                    members.append(records[j])
                    visited.add(j)

            if len(members) > 1:
                groups.append(members)

        logger.debug("Grouped %d records into %d duplicate groups", len(records), len(groups))
        return groups

    def find_existing(
        self,
        candidate: "Record",
        registry: Iterable["Record"],
    ) -> "Record | None":
        """
        Return the first registry record the candidate duplicates, if any.

        Hidden records count; the exception rule does not apply.
        """
        for existing in registry:
            if candidate.place_id and candidate.place_id == existing.place_id:
                return existing
            if not (candidate.has_usable_coordinates and existing.has_usable_coordinates):
                continue
            if is_insert_duplicate(
                similarity(candidate.name, existing.name),
                exact_match(candidate.name, existing.name),
                distance_meters(candidate.coordinates, existing.coordinates),
                self.thresholds,
            ):
                return existing
        return None

    def review_candidates(self, records: Sequence["Record"]) -> list[ReviewPair]:
        """
        Pairs that group() leaves apart but a human should look at:
        transliteration-like names within the batch radius, or names sharing
        a base within the alias radius.  Never merged automatically.
        """
        group_of: dict[int, int] = {}
        index_of = {id(r): i for i, r in enumerate(records)}
        for g, members in enumerate(self.group(records)):
            for member in members:
                group_of[index_of[id(member)]] = g

        usable = [
            i for i, r in enumerate(records)
            if r.has_usable_coordinates and not self._is_exception(r)
        ]

        pairs: list[ReviewPair] = []
        for pos, i in enumerate(usable):
            a = records[i]
            box = bounding_box(a.coordinates, self.thresholds.alias_distance_m)
            for j in usable[pos + 1:]:
                if i in group_of and group_of.get(j) == group_of[i]:
                    continue
                b = records[j]
                if not in_bounding_box(b.coordinates, box):
                    continue

                dist = distance_meters(a.coordinates, b.coordinates)
                edit = edit_similarity(a.name, b.name)
                reason = None
                if (
                    dist < self.thresholds.batch_distance_m
                    and edit >= self.thresholds.review_edit_similarity
                ):
                    reason = "edit_distance"
                elif (
                    dist < self.thresholds.alias_distance_m
                    and shares_significant_portion(a.name, b.name)
                ):
                    reason = "shared_base_name"

                if reason:
                    pairs.append(ReviewPair(
                        record_a_id=a.id,
                        record_b_id=b.id,
                        name_a=a.name,
                        name_b=b.name,
                        distance_m=dist,
                        edit_similarity=edit,
                        reason=reason,
                    ))

        return pairs
