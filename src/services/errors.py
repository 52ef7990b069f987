"""Service layer exceptions.

Internal tier failures (upstream, circuit-open) are recovered by the
freshness resolver; the remaining errors map to client-facing status
codes in the API layer.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base exception for service layer errors."""


class UpstreamError(ServiceError):
    """The data.gov.in call failed (network, timeout, non-2xx, bad body)."""


class CircuitOpenError(UpstreamError):
    """Circuit breaker is open, request blocked before any I/O."""

    def __init__(self, retry_after_seconds: float) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit breaker open, retry after {retry_after_seconds:.1f}s"
        )


class MetricsNotFoundError(ServiceError):
    """No tier produced data for the requested district and fiscal year."""


class RegionNotServedError(ServiceError):
    """The requested state lies outside the configured target state."""

    def __init__(self, state: str, target_state: str) -> None:
        self.state = state
        self.target_state = target_state
        super().__init__(f"State '{state}' is not served (configured for '{target_state}')")


class InvalidCoordinatesError(ServiceError):
    """Latitude/longitude missing or outside the valid range."""


class OutOfRegionError(ServiceError):
    """Detected location lies outside the configured target state."""

    def __init__(self, target_state: str, detected_state: str | None) -> None:
        self.target_state = target_state
        self.detected_state = detected_state
        super().__init__(f"Location is not in {target_state.title()}")


class DistrictNotDetectedError(ServiceError):
    """Reverse geocoding returned no district-like address field."""


class GeocodingError(ServiceError):
    """The reverse-geocoding provider call failed."""
