"""Identity verification for relay handshakes and HTTP requests.

Tokens are HS-signed JWTs issued by the surrounding application. The ``sub``
claim is the user id; the optional ``name`` claim is the display name.
"""

from ..auth_utils import decode_access_token
from ..config.models import SecurityConfig
from ..exceptions import ConfigurationError
from ..logging.enhanced_logging_config import get_logger
from ..realtime.connection_models import DEFAULT_DISPLAY_NAME, Principal

logger = get_logger(__name__)


class JWTIdentityVerifier:
    """Resolves a session token to a Principal."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", audience: str | None = None) -> None:
        if not secret_key:
            raise ConfigurationError("JWT secret must not be empty", config_key="COLLAB_JWT_SECRET")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "JWTIdentityVerifier":
        return cls(config.jwt_secret, config.jwt_algorithm, config.jwt_audience)

    def verify(self, token: str | None) -> Principal | None:
        """Return the token's principal, or None if the token cannot be trusted."""
        payload = decode_access_token(token, self.secret_key, self.algorithm, self.audience)
        if payload is None:
            return None

        user_id = str(payload.get("sub") or "").strip()
        if not user_id:
            logger.warning("JWT missing sub claim")
            return None

        display_name = payload.get("name")
        if not isinstance(display_name, str) or not display_name.strip():
            display_name = DEFAULT_DISPLAY_NAME
        return Principal(user_id=user_id, display_name=display_name.strip())
