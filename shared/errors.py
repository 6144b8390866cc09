"""
Shared error handling for Share Gate.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class GateException(Exception):
    """Base exception for Share Gate."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(GateException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StoreError(GateException):
    """Entry store errors."""

    def __init__(self, message: str = "Entry store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)


class ExternalServiceError(GateException):
    """External service errors."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class GeoLookupError(ExternalServiceError):
    """Geolocation lookup failed for an address."""

    def __init__(self, message: str = "Geolocation lookup failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("geoip", message, details)


class CategoryLookupError(ExternalServiceError):
    """IP category classification failed for an address."""

    def __init__(self, message: str = "Category lookup failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("ipcat", message, details)
