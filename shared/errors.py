"""
Shared error handling for the card proxy access layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    ok: bool = False
    error: str
    message: Optional[str] = None


class AccessLayerException(Exception):
    """Base exception for access layer failures surfaced to callers."""

    status_code = 500

    def __init__(self, kind: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.kind = kind
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message or kind)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.kind, message=self.message)


class ValidationError(AccessLayerException):
    """Malformed or oversized input."""

    status_code = 400


class AuthError(AccessLayerException):
    """Missing/invalid credential or signature, or a replayed request."""

    status_code = 401


class AdmissionError(AccessLayerException):
    """Admission denied; the caller should back off and retry later."""


class RateLimitError(AdmissionError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__("rate_limited", message, details)


class QuotaExceededError(AdmissionError):
    """Usage quota exhausted for the current period."""

    status_code = 402

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__("quota_exceeded", message, details)


class ConfigurationError(AccessLayerException):
    """A required secret or setting is absent. Operators must be alerted."""

    status_code = 500

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__("server_misconfigured", message, details)


class DownstreamError(AccessLayerException):
    """The AI service failed after retries; kind names the failed stage."""

    status_code = 500


class StoreError(Exception):
    """Coordination store unavailable. Never surfaced; triggers local fallback."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation}: {cause}" if cause else operation)
