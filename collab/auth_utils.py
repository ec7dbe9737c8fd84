"""
JWT helpers for session tokens.

Session issuance belongs to the surrounding application; the collaboration
server only needs to verify the tokens it is handed. ``create_access_token``
exists for that application, for tooling and for tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from .exceptions import AuthenticationFailure
from .logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(
    data: dict[str, Any],
    secret_key: str,
    expires_delta: timedelta | None = None,
    algorithm: str = ALGORITHM,
    audience: str | None = None,
) -> str:
    """Create a JWT access token."""
    logger.debug("Creating access token", expires_delta=expires_delta)

    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    if audience is not None:
        to_encode["aud"] = audience

    try:
        token = jwt.encode(to_encode, secret_key, algorithm=algorithm)
    except JWTError as e:
        raise AuthenticationFailure(
            f"Failed to create access token: {e}",
            details={"user_id": data.get("sub")},
            user_friendly="Authentication token creation failed",
        ) from e
    logger.debug("Access token created successfully")
    return token


def decode_access_token(
    token: str | None,
    secret_key: str,
    algorithm: str = ALGORITHM,
    audience: str | None = None,
) -> dict[str, Any] | None:
    """Decode and validate a JWT access token; None when it is missing or invalid."""
    if token is None:
        logger.debug("No token provided for decoding")
        return None

    options = {"verify_aud": audience is not None}
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm], audience=audience, options=options)
    except JWTError as e:
        logger.warning("JWT decode error", error=str(e))
        return None
    logger.debug("Access token decoded successfully")
    return payload
