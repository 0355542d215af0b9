"""Registry errors and failure typing."""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for registry failures."""

    error_code = "REGISTRY_ERROR"


class ConfigError(RegistryError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class ValidationError(RegistryError):
    """Raised when a record cannot be persisted (bad coordinates, no name, ...).

    Always raised before any network call and never retried.
    """

    error_code = "VALIDATION_ERROR"


class TransientProviderError(RegistryError):
    """Raised for non-2xx answers from the store, place search or discovery."""

    error_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.rate_limited = rate_limited


class ClassificationAmbiguous(RegistryError):
    """Raised when place type tags are neither address-only nor POI."""

    error_code = "CLASSIFICATION_AMBIGUOUS"

    def __init__(self, types: list[str] | tuple[str, ...]) -> None:
        super().__init__(f"Ambiguous place types: {', '.join(types) or '(none)'}")
        self.types = tuple(types)
