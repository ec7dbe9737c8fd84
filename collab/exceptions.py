"""
Exception hierarchy for the collaboration server.

The four failure classes of the real-time layer (authentication, protocol,
transport, capacity) each map onto one exception type here. None of them is
ever allowed to cross from one connection's session into another's: the relay
catches them at the connection boundary and converts them into a log entry,
an error event for the originating connection, or a forced close.
"""

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information for error handling.

    Provides structured context for error reporting and debugging.
    """

    user_id: str | None = None
    connection_id: str | None = None
    document_id: str | None = None
    event_type: str | None = None
    request_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "user_id": self.user_id,
            "connection_id": self.connection_id,
            "document_id": self.document_id,
            "event_type": self.event_type,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class CollabError(Exception):
    """
    Base exception for all collaboration server errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    log_level = "error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize the error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        log_method = getattr(logger, self.log_level, logger.error)
        log_method(
            "Collaboration error occurred",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class AuthenticationFailure(CollabError):
    """Handshake could not resolve a principal; the connection never becomes active."""

    log_level = "warning"

    def __init__(self, message: str, context: ErrorContext | None = None, auth_type: str = "jwt", **kwargs):
        super().__init__(message, context, **kwargs)
        self.auth_type = auth_type
        self.details["auth_type"] = auth_type


class ProtocolViolation(CollabError):
    """Malformed event or an operation on a room the connection is not a member of."""

    log_level = "warning"

    def __init__(self, message: str, context: ErrorContext | None = None, operation: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.operation = operation
        if operation:
            self.details["operation"] = operation


class TransportFailure(CollabError):
    """Network-level failure; triggers full cleanup of the connection."""

    log_level = "info"

    def __init__(self, message: str, context: ErrorContext | None = None, close_code: int = 1000, **kwargs):
        super().__init__(message, context, **kwargs)
        self.close_code = close_code
        self.details["close_code"] = close_code


class CapacityFailure(CollabError):
    """Oversized payload or excessive event rate from one connection."""

    log_level = "warning"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        limit_type: str = "unknown",
        retry_after: int | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.limit_type = limit_type
        self.retry_after = retry_after
        self.details["limit_type"] = limit_type
        if retry_after:
            self.details["retry_after"] = retry_after


class ConfigurationError(CollabError):
    """Configuration and setup errors."""

    def __init__(self, message: str, context: ErrorContext | None = None, config_key: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


def create_error_context(**kwargs) -> ErrorContext:
    """
    Create an error context with the given parameters.

    Args:
        **kwargs: Context parameters

    Returns:
        ErrorContext object
    """
    return ErrorContext(**kwargs)


def handle_exception(exc: Exception, context: ErrorContext | None = None) -> CollabError:
    """
    Convert a generic exception to a CollabError.

    Args:
        exc: The original exception
        context: Error context

    Returns:
        CollabError instance
    """
    if isinstance(exc, CollabError):
        return exc

    if isinstance(exc, ValueError | TypeError):
        return ProtocolViolation(str(exc), context, details={"original_type": type(exc).__name__})
    elif isinstance(exc, ConnectionError | TimeoutError):
        return TransportFailure(str(exc), context, details={"original_type": type(exc).__name__})
    else:
        return CollabError(
            str(exc), context, details={"original_type": type(exc).__name__, "traceback": traceback.format_exc()}
        )
