"""
FastAPI application factory for the collaboration server.

This module handles FastAPI app creation, middleware configuration,
and router registration.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..api.real_time import realtime_router
from ..config import AppConfig, get_config
from ..error_types import ErrorType, create_standard_error_response
from ..exceptions import AuthenticationFailure, CapacityFailure, CollabError, ProtocolViolation
from ..logging.enhanced_logging_config import get_logger
from ..middleware.correlation_middleware import CorrelationMiddleware
from .lifespan import lifespan

logger = get_logger(__name__)

_STATUS_BY_ERROR: dict[type[CollabError], tuple[int, ErrorType]] = {
    AuthenticationFailure: (401, ErrorType.AUTHENTICATION_FAILED),
    ProtocolViolation: (400, ErrorType.VALIDATION_ERROR),
    CapacityFailure: (429, ErrorType.RATE_LIMIT_EXCEEDED),
}


async def collab_error_handler(request: Request, exc: CollabError) -> JSONResponse:
    """Render a CollabError escaping an HTTP route as a standard error body."""
    status_code, error_type = 500, ErrorType.INTERNAL_ERROR
    for error_class, mapping in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_class):
            status_code, error_type = mapping
            break
    return JSONResponse(
        status_code=status_code,
        content=create_standard_error_response(error_type, exc.message, exc.user_friendly, exc.details),
    )


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration; loaded from the environment when omitted

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    config = config or get_config()

    app = FastAPI(
        title="Collab Realtime API",
        description="Presence tracking and event relay for collaborative document editing",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    cors = config.cors
    logger.info(
        "CORS configuration",
        allow_origins=cors.allow_origins,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
        allow_credentials=cors.allow_credentials,
        max_age=cors.max_age,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.allow_origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=[m.upper() for m in cors.allow_methods],
        allow_headers=cors.allow_headers,
        expose_headers=["X-Correlation-ID"],
        max_age=cors.max_age,
    )
    # Outermost, so every log line of a request carries its correlation id
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(CollabError, collab_error_handler)
    app.include_router(realtime_router)

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> dict[str, Any]:
        relay = getattr(request.app.state, "relay", None)
        if relay is None:
            return {"status": "starting"}
        stats = relay.get_stats()
        return {
            "status": "ok",
            "open_connections": stats["open_connections"],
            "total_rooms": stats["total_rooms"],
        }

    return app
