"""
Atlas Building Registry — Runtime Configuration

One ``RegistryConfig`` is built at process start (YAML file, then secrets from
the environment) and handed to every component.  Nothing else in the package
reads environment variables.

Dependencies:
    pip install pyyaml
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .algorithms.duplicate_grouper import (
    DEFAULT_EXCEPTION_RULES,
    DuplicateThresholds,
    ExceptionRule,
)
from .errors import ConfigError


# ---------------------------------------------------------------------------
# Defaults (overridden by config/registry.yaml at runtime)
# ---------------------------------------------------------------------------

MIN_MUTATION_DELAY_S = 0.15
MAX_MUTATION_DELAY_S = 0.4

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "registry.yaml"

# Environment variable → (section, attribute)
ENV_OVERRIDES = {
    "BASEROW_TOKEN": ("baserow", "token"),
    "BASEROW_TABLE_ID": ("baserow", "table_id"),
    "GOOGLE_MAPS_API_KEY": ("places", "api_key"),
    "GEMINI_API_KEY": ("gemini", "api_key"),
}


@dataclass(frozen=True)
class BaserowSettings:
    base_url: str = "https://api.baserow.io"
    table_id: str = ""
    token: str = ""
    page_size: int = 200
    timeout_s: float = 30.0


@dataclass(frozen=True)
class PlacesSettings:
    base_url: str = "https://maps.googleapis.com/maps/api/place"
    api_key: str = ""
    timeout_s: float = 15.0
    photo_max_width: int = 1200


@dataclass(frozen=True)
class GeminiSettings:
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.5-flash"
    api_key: str = ""
    timeout_s: float = 120.0


@dataclass(frozen=True)
class NominatimSettings:
    base_url: str = "https://nominatim.openstreetmap.org"
    user_agent: str = "atlas-registry/0.1"
    timeout_s: float = 10.0
    language: str = "en"


def _section(raw: Mapping[str, Any], name: str, cls: type) -> Any:
    values = raw.get(name) or {}
    if not isinstance(values, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__}
    try:
        return cls(**known)
    except TypeError as exc:
        raise ConfigError(f"Invalid config section '{name}': {exc}") from exc


@dataclass
class RegistryConfig:
    """Loaded runtime configuration."""

    baserow: BaserowSettings = field(default_factory=BaserowSettings)
    places: PlacesSettings = field(default_factory=PlacesSettings)
    gemini: GeminiSettings = field(default_factory=GeminiSettings)
    nominatim: NominatimSettings = field(default_factory=NominatimSettings)
    thresholds: DuplicateThresholds = field(default_factory=DuplicateThresholds)
    exception_rules: tuple[ExceptionRule, ...] = DEFAULT_EXCEPTION_RULES
    mutation_delay_s: float = 0.3
    repair_delay_s: float = 0.4
    lookup_delay_s: float = 0.15
    origin_radius_m: float = 50_000.0
    geocode_cache_size: int | None = 1024

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        for name in ("mutation_delay_s", "repair_delay_s", "lookup_delay_s"):
            value = getattr(self, name)
            if not MIN_MUTATION_DELAY_S <= value <= MAX_MUTATION_DELAY_S:
                raise ConfigError(
                    f"{name} must be between {MIN_MUTATION_DELAY_S} and "
                    f"{MAX_MUTATION_DELAY_S} seconds, got {value}"
                )
        if self.origin_radius_m <= 0:
            raise ConfigError("origin_radius_m must be positive")
        if self.geocode_cache_size is not None and self.geocode_cache_size < 1:
            raise ConfigError("geocode_cache_size must be >= 1, or null for unbounded")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> "RegistryConfig":
        raw = raw or {}
        if not isinstance(raw, Mapping):
            raise ConfigError("Config root must be a mapping")

        defaults = cls()
        dedup = raw.get("deduplication") or {}
        rules_raw = dedup.get("exception_rules")
        rules = (
            tuple(ExceptionRule.from_dict(r) for r in rules_raw)
            if rules_raw is not None
            else DEFAULT_EXCEPTION_RULES
        )
        pacing = raw.get("pacing") or {}
        discovery = raw.get("discovery") or {}
        geocoding = raw.get("geocoding") or {}

        try:
            thresholds = DuplicateThresholds.from_dict(dedup.get("thresholds"))
            return cls(
                baserow=_section(raw, "baserow", BaserowSettings),
                places=_section(raw, "places", PlacesSettings),
                gemini=_section(raw, "gemini", GeminiSettings),
                nominatim=_section(raw, "nominatim", NominatimSettings),
                thresholds=thresholds,
                exception_rules=rules,
                mutation_delay_s=float(pacing.get("mutation_delay_s", defaults.mutation_delay_s)),
                repair_delay_s=float(pacing.get("repair_delay_s", defaults.repair_delay_s)),
                lookup_delay_s=float(pacing.get("lookup_delay_s", defaults.lookup_delay_s)),
                origin_radius_m=float(discovery.get("origin_radius_m", defaults.origin_radius_m)),
                geocode_cache_size=geocoding.get("cache_size", defaults.geocode_cache_size),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid configuration value: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RegistryConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Malformed YAML in {path}: {exc}") from exc
        return cls.from_dict(raw)

    def with_env(self, environ: Mapping[str, str] | None = None) -> "RegistryConfig":
        """Return a copy with secrets taken from the environment where set."""
        environ = os.environ if environ is None else environ
        updated = self
        for var, (section, attr) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value:
                settings = replace(getattr(updated, section), **{attr: value})
                updated = replace(updated, **{section: settings})
        return updated

    def require(self, *names: str) -> None:
        """Raise ConfigError unless each named secret ("baserow.token", ...) is set."""
        missing = []
        for name in names:
            section, attr = name.split(".", 1)
            if not getattr(getattr(self, section), attr):
                missing.append(name)
        if missing:
            env = {f"{s}.{a}": v for v, (s, a) in ENV_OVERRIDES.items()}
            hints = ", ".join(env.get(m, m) for m in missing)
            raise ConfigError(f"Missing required configuration: {hints}")


def load_config(path: str | Path | None = None) -> RegistryConfig:
    """Load the YAML file (default config/registry.yaml if present) and apply env overrides."""
    if path is None:
        config = (
            RegistryConfig.from_yaml(DEFAULT_CONFIG_PATH)
            if DEFAULT_CONFIG_PATH.exists()
            else RegistryConfig()
        )
    else:
        config = RegistryConfig.from_yaml(path)
    return config.with_env()
