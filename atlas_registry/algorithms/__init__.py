"""Atlas Building Registry — Matching and Classification Algorithms."""

from .name_similarity import (
    normalize,
    exact_match,
    similarity,
    base_name,
    shares_significant_portion,
    edit_similarity,
)
from .geo_proximity import (
    Coordinates,
    distance_meters,
    bounding_box,
    within_degrees,
)
from .place_classifier import (
    PlaceKind,
    classify,
    is_address_only,
    require_decisive,
)
from .completeness import score
from .duplicate_grouper import (
    DuplicateGrouper,
    DuplicateThresholds,
    ExceptionRule,
    ReviewPair,
    SEVEN_SISTERS,
    is_batch_duplicate,
    is_insert_duplicate,
    is_named_exception,
)
from .locality import (
    derive_city_country,
    normalize_city,
    normalize_country,
)

__all__ = [
    "normalize",
    "exact_match",
    "similarity",
    "base_name",
    "shares_significant_portion",
    "edit_similarity",
    "Coordinates",
    "distance_meters",
    "bounding_box",
    "within_degrees",
    "PlaceKind",
    "classify",
    "is_address_only",
    "require_decisive",
    "score",
    "DuplicateGrouper",
    "DuplicateThresholds",
    "ExceptionRule",
    "ReviewPair",
    "SEVEN_SISTERS",
    "is_batch_duplicate",
    "is_insert_duplicate",
    "is_named_exception",
    "derive_city_country",
    "normalize_city",
    "normalize_country",
]
