"""
Centralized error types and constants for the collaboration server.

This module defines standardized error types and constants to ensure
consistent error payloads across the HTTP API and the websocket relay.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Standardized error types for consistent categorization."""

    # Authentication and Authorization
    AUTHENTICATION_FAILED = "authentication_failed"

    # Validation / protocol
    VALIDATION_ERROR = "validation_error"
    INVALID_FORMAT = "invalid_format"
    JOIN_REJECTED = "join_rejected"

    # Capacity
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TOO_MANY_ROOMS = "too_many_rooms"

    # System
    INTERNAL_ERROR = "internal_error"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def create_standard_error_response(
    error_type: ErrorType,
    message: str,
    user_friendly: str | None = None,
    details: dict[str, Any] | None = None,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
) -> dict[str, Any]:
    """
    Create a standardized HTTP error response body.

    Args:
        error_type: The type of error
        message: Technical error message
        user_friendly: User-friendly error message (optional)
        details: Additional error details (optional)
        severity: Error severity level (optional)

    Returns:
        Standardized error response dictionary
    """
    return {
        "error": {
            "type": error_type.value,
            "message": message,
            "user_friendly": user_friendly or message,
            "details": details or {},
            "severity": severity.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    }


def create_websocket_error_response(
    error_type: ErrorType,
    message: str,
    user_friendly: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a standardized websocket error event.

    The event carries both ``type`` and ``event_type`` so that clients keyed
    on either field route it the same way.

    Args:
        error_type: The type of error
        message: Technical error message
        user_friendly: User-friendly error message (optional)
        details: Additional error details (optional)

    Returns:
        Websocket error event dictionary
    """
    return {
        "type": "error",
        "event_type": "error",
        "error_type": error_type.value,
        "message": message,
        "user_friendly": user_friendly or message,
        "details": details or {},
    }


class ErrorMessages:
    """Common error messages for consistent user experience."""

    # Authentication
    AUTHENTICATION_REQUIRED = "Authentication required"
    INVALID_TOKEN = "Your session is invalid or has expired. Please sign in again."

    # Validation
    JOIN_REJECTED = "Could not join this document"

    # Capacity
    RATE_LIMIT_EXCEEDED = "You are sending updates too quickly. Please slow down."
    PAYLOAD_TOO_LARGE = "The update is too large to share"
    TOO_MANY_ROOMS = "Too many documents open at once"

    # System
    INTERNAL_ERROR = "An internal error occurred"
    SERVICE_UNAVAILABLE = "Collaboration service temporarily unavailable"
