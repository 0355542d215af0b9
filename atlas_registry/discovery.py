"""
Atlas Building Registry — Generative Discovery Client

Asks Gemini (generateContent with Google Maps and Google Search grounding)
for notable buildings matching a free-text query.  The model answers in
free text; the JSON array inside it is extracted and validated item by item,
and the Maps grounding chunks are returned alongside as evidence for the
place resolver.

Dependencies:
    pip install requests pydantic
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .algorithms.geo_proximity import Coordinates
from .config import GeminiSettings
from .errors import ConfigError
from .http import JsonHttpClient

logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTION = (
    "You are an architecture guide. Answer with a JSON array only. Each item "
    "has: name, location, city, country, description, style, lat, lng, "
    "architect (optional) and isPrioritized (optional boolean)."
)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class DiscoveryCandidate(BaseModel):
    """One building proposed by the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1, description="Display name of the building")
    location: str = Field("", description="Free-text address")
    city: str = ""
    country: str = ""
    description: str = ""
    style: str = Field("", description="Comma-joined style tags, primary first")
    lat: float
    lng: float
    is_prioritized: bool = Field(
        False,
        validation_alias=AliasChoices("isPrioritized", "is_prioritized"),
    )
    architect: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("location", "city", "country", "description", "style", "architect", mode="before")
    @classmethod
    def _blank_if_missing(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return value

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class GroundingEvidence(BaseModel):
    """A Maps grounding chunk: a real place the model's answer was grounded on."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = ""
    uri: str = ""
    place_id: str | None = Field(
        None,
        validation_alias=AliasChoices("placeId", "place_id"),
    )
    lat: float | None = None
    lng: float | None = None

    @property
    def coordinates(self) -> Coordinates | None:
        if self.lat is None or self.lng is None:
            return None
        return Coordinates(lat=self.lat, lng=self.lng)


@dataclass
class DiscoveryResult:
    candidates: list[DiscoveryCandidate] = field(default_factory=list)
    evidence: list[GroundingEvidence] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def extract_json_array(text: str | None) -> str:
    """
    The text between the first "[" and the last "]" (inclusive), or "[]".

    Tolerates markdown fences and chatter around the array.
    """
    text = text or ""
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        return "[]"
    return text[start:end + 1]


def parse_candidates(text: str | None) -> list[DiscoveryCandidate]:
    """Validate each array item; invalid items are dropped with a warning."""
    try:
        items = json.loads(extract_json_array(text))
    except ValueError:
        logger.warning("Discovery answer is not valid JSON; no candidates")
        return []
    if not isinstance(items, list):
        return []

    candidates = []
    for index, item in enumerate(items):
        try:
            candidates.append(DiscoveryCandidate.model_validate(item))
        except PydanticValidationError as exc:
            logger.warning(
                "Dropping discovery item %d (%s): %d validation error(s)",
                index,
                item.get("name", "?") if isinstance(item, dict) else "?",
                exc.error_count(),
            )
    return candidates


def parse_evidence(response: dict[str, Any]) -> list[GroundingEvidence]:
    """Maps grounding chunks of the first answer candidate."""
    answers = response.get("candidates") or []
    if not answers:
        return []
    metadata = answers[0].get("groundingMetadata") or {}

    evidence = []
    for chunk in metadata.get("groundingChunks") or []:
        maps = chunk.get("maps") if isinstance(chunk, dict) else None
        if not maps:
            continue
        try:
            evidence.append(GroundingEvidence.model_validate(maps))
        except PydanticValidationError:
            logger.debug("Skipping malformed grounding chunk: %r", maps)
    return evidence


def answer_text(response: dict[str, Any]) -> str:
    answers = response.get("candidates") or []
    if not answers:
        return ""
    parts = (answers[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GeminiDiscoveryClient(JsonHttpClient):
    provider = "gemini"

    def __init__(self, settings: GeminiSettings) -> None:
        if not settings.api_key:
            raise ConfigError("Gemini API key is required (GEMINI_API_KEY)")
        super().__init__(
            timeout=settings.timeout_s,
            headers={"x-goog-api-key": settings.api_key, "Content-Type": "application/json"},
        )
        self.settings = settings
        self.url = f"{settings.base_url.rstrip('/')}/models/{settings.model}:generateContent"

    def build_request(self, query: str, origin: Coordinates | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{
                "role": "user",
                "parts": [{"text": f"Find notable buildings for: {query}"}],
            }],
            # Structured output is not available together with grounding tools
            "tools": [{"googleMaps": {}}, {"googleSearch": {}}],
        }
        if origin is not None:
            body["toolConfig"] = {
                "retrievalConfig": {
                    "latLng": {"latitude": origin.lat, "longitude": origin.lng},
                },
            }
        return body

    def discover(self, query: str, origin: Coordinates | None = None) -> DiscoveryResult:
        response = self.request_json("POST", self.url, json=self.build_request(query, origin))

        block = (response.get("promptFeedback") or {}).get("blockReason")
        if block:
            logger.warning("Discovery query %r blocked: %s", query, block)
            return DiscoveryResult()

        result = DiscoveryResult(
            candidates=parse_candidates(answer_text(response)),
            evidence=parse_evidence(response),
        )
        logger.info(
            "Discovery for %r: %d candidates, %d grounding chunks",
            query, len(result.candidates), len(result.evidence),
        )
        return result
