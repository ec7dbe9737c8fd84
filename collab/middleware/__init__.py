"""ASGI middleware for the collaboration server."""

from .correlation_middleware import CorrelationMiddleware

__all__ = ["CorrelationMiddleware"]
