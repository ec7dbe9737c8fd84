"""
Authentication dependencies for the collaboration HTTP API.

This module provides dependency injection functions for
authentication in FastAPI endpoints.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..error_types import ErrorMessages
from ..logging.enhanced_logging_config import get_logger
from ..realtime.connection_models import Principal
from .jwt_strategy import JWTIdentityVerifier

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_verifier(request: Request) -> JWTIdentityVerifier:
    """The verifier published on app.state by the lifespan."""
    verifier = getattr(request.app.state, "identity_verifier", None)
    if verifier is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=ErrorMessages.SERVICE_UNAVAILABLE)
    return verifier


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: JWTIdentityVerifier = Depends(get_identity_verifier),
) -> Principal:
    """Get the authenticated principal or raise 401."""
    principal = verifier.verify(credentials.credentials if credentials else None)
    if principal is None:
        logger.info("HTTP request rejected, missing or invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ErrorMessages.AUTHENTICATION_REQUIRED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


__all__ = ["bearer_scheme", "get_current_principal", "get_identity_verifier"]
