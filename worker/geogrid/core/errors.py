"""Exception hierarchy for the rank tracking worker."""

from typing import Dict, Optional


class GeoGridError(RuntimeError):
    """Base class for errors raised by the rank tracking engine."""


class ValidationError(GeoGridError):
    """Raised when scan parameters are rejected before any scan is created."""

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or {}


class ProviderError(GeoGridError):
    """Raised when the SERP provider fails to return a ranked list for one point."""

    def __init__(self, message: str, *, transient: bool = False, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class OrchestrationError(GeoGridError):
    """Raised when a scan cannot be finalized after its searches ran."""


class InvalidTransitionError(GeoGridError):
    """Raised on a scan status change the lifecycle does not allow."""


class ScanCancelledError(GeoGridError):
    """Raised inside scan workers once cancellation has been requested."""


class DegenerateCoordinateError(ValueError):
    """Raised when a coordinate conversion would divide by zero (at the poles)."""
