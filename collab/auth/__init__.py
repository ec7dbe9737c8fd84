"""Authentication for the collaboration server."""

from .dependencies import get_current_principal, get_identity_verifier
from .jwt_strategy import JWTIdentityVerifier

__all__ = ["JWTIdentityVerifier", "get_current_principal", "get_identity_verifier"]
