"""
Exception hierarchy for the Fleet Ops integration.

Fetch-path errors (transport, malformed response, persistence) are caught by
the coordinator and published as a string. Validation errors are raised to the
caller of a write operation.
"""
from __future__ import annotations


class FleetOpsError(Exception):
    """Base class for all Fleet Ops errors."""


class TransportError(FleetOpsError):
    """Network failure, timeout or non-JSON error response from upstream."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class ApiResponseError(TransportError):
    """Upstream answered with an error payload."""

    def __init__(self, message: str, code: int | None = None, status: int | None = None) -> None:
        self.code = code
        self.message = message
        super().__init__(f"API Error: {message} (Code: {code})", status)


class MalformedResponseError(FleetOpsError):
    """Response JSON did not have the expected top-level shape."""


class PersistenceUnavailableError(FleetOpsError):
    """Key-value store is unreachable or not configured."""

    def __init__(self, message: str, details: str | None = None) -> None:
        self.details = details
        super().__init__(message)


class ValidationError(FleetOpsError):
    """User-submitted data was rejected before reaching the store."""
