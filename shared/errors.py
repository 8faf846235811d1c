"""
Shared error handling for the clinic scheduling service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class SchedulingException(Exception):
    """Base exception for scheduling services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(SchedulingException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(SchedulingException):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StructuralCorruptionError(SchedulingException):
    """A stored condition tree is malformed.

    Raised for missing nodes, wrong child counts on AND/NOT/root nodes and
    unrecognized leaf types, operators or payloads. Never treated as "no
    match": a malformed blocking rule must not admit a prohibited booking.
    """

    status_code = 500

    def __init__(self, message: str = "Condition tree is corrupt", details: Optional[Dict[str, Any]] = None):
        super().__init__("STRUCTURAL_CORRUPTION", message, details)


class PreloadMismatchError(SchedulingException):
    """A context was evaluated against day data preloaded for another day."""

    status_code = 500

    def __init__(self, message: str = "Preloaded day data does not cover this context",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("PRELOAD_MISMATCH", message, details)


class UpstreamUnavailableError(SchedulingException):
    """Loading rules, appointments or schedules failed."""

    status_code = 503

    def __init__(self, source: str, message: str = "Upstream read failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_UNAVAILABLE", f"{source}: {message}", details)
        self.source = source
