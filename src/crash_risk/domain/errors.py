"""
Domain Error Taxonomy.

All engine-specific exceptions with clear categorization.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """
    Base class for all domain errors.

    Includes structured error info for logging and debugging.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        instrument: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.instrument = instrument
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "instrument": self.instrument,
            "details": self.details,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(DomainError):
    """Invalid input or state."""

    error_code = "VALIDATION_ERROR"


class ConfigurationError(ValidationError):
    """Settings that cannot drive a working engine."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, *, errors: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])
        self.details["errors"] = self.errors


# =============================================================================
# Feed Errors
# =============================================================================


class FeedError(DomainError):
    """Error from the market data feed."""

    error_code = "FEED_ERROR"

    def __init__(self, message: str, *, status: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status = status
        if status is not None:
            self.details["status"] = status


class FeedUnavailableError(FeedError):
    """Feed could not be reached (connection error, timeout)."""

    error_code = "FEED_UNAVAILABLE"


class MalformedPayloadError(FeedError):
    """Feed answered with a payload of unexpected shape."""

    error_code = "MALFORMED_PAYLOAD"


# =============================================================================
# Engine Errors
# =============================================================================


class StoreError(DomainError):
    """History persistence failed."""

    error_code = "STORE_ERROR"
