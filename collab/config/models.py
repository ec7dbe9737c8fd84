"""
Pydantic-based configuration models for the collaboration server.

Every tunable of the relay, the HTTP surface, the client lifecycle manager and
the logging pipeline is declared here as a validated BaseSettings model and
read from the environment (or a .env file).
"""

import json
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

from ..logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def _parse_env_list(candidate: Any) -> list[str]:
    """Parse a string from the environment as JSON list or CSV."""
    if candidate is None:
        return []
    if isinstance(candidate, list | tuple):
        return [str(item).strip() for item in candidate if str(item).strip()]
    s = str(candidate).strip()
    if not s:
        return []
    try:
        loaded = json.loads(s)
        if isinstance(loaded, list):
            return [str(item).strip() for item in loaded if str(item).strip()]
    except json.JSONDecodeError:
        pass
    return [item.strip() for item in s.split(",") if item.strip()]


class ServerConfig(BaseSettings):
    """Server network configuration."""

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8000, description="Server port")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    model_config = {"env_prefix": "SERVER_", "case_sensitive": False, "extra": "ignore"}


class SecurityConfig(BaseSettings):
    """Security-sensitive configuration for session token verification."""

    jwt_secret: str = Field(..., description="Shared secret used to verify session tokens (required)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_audience: str | None = Field(default=None, description="Expected token audience, if any")

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Reject trivially short secrets."""
        if len(v) < 16:
            logger.error("JWT secret validation failed - too short", secret_length=len(v), minimum_length=16)
            raise ValueError("JWT secret must be at least 16 characters")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Only HMAC algorithms are supported with a shared secret."""
        valid = ["HS256", "HS384", "HS512"]
        if v.upper() not in valid:
            raise ValueError(f"JWT algorithm must be one of {valid}, got '{v}'")
        return v.upper()

    model_config = {"env_prefix": "COLLAB_", "case_sensitive": False, "extra": "ignore"}


class RelayConfig(BaseSettings):
    """Limits and timers of the real-time event relay."""

    idle_timeout_seconds: float = Field(default=60.0, description="Close connections silent for this long")
    sweep_interval_seconds: float = Field(default=5.0, description="How often idle connections are swept")
    max_message_size: int = Field(default=1024 * 1024, description="Maximum inbound frame size in bytes")
    max_json_depth: int = Field(default=32, description="Maximum nesting depth of inbound JSON")
    max_document_id_length: int = Field(default=256, description="Maximum length of a document id")
    outbox_size: int = Field(default=256, description="Pending outbound events per connection before overflow")
    max_rooms_per_connection: int = Field(default=64, description="Rooms one connection may join at once")
    max_messages_per_window: int = Field(default=240, description="Inbound events per connection per window")
    message_window_seconds: int = Field(default=10, description="Inbound event rate window in seconds")
    max_connection_attempts: int = Field(default=20, description="Handshakes per user per connection window")
    connection_window_seconds: int = Field(default=60, description="Handshake rate window in seconds")
    max_capacity_violations: int = Field(default=5, description="Capacity violations before forced disconnect")

    @field_validator(
        "max_message_size",
        "max_json_depth",
        "max_document_id_length",
        "outbox_size",
        "max_rooms_per_connection",
        "max_messages_per_window",
        "message_window_seconds",
        "max_connection_attempts",
        "connection_window_seconds",
        "max_capacity_violations",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limit values are positive."""
        if v < 1:
            raise ValueError("Relay limits must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_timers(self) -> "RelayConfig":
        """The sweep must run more often than the idle window it enforces."""
        if self.idle_timeout_seconds <= 0 or self.sweep_interval_seconds <= 0:
            raise ValueError("Relay timers must be positive")
        if self.sweep_interval_seconds > self.idle_timeout_seconds:
            logger.error(
                "Idle sweep interval exceeds idle timeout",
                sweep_interval_seconds=self.sweep_interval_seconds,
                idle_timeout_seconds=self.idle_timeout_seconds,
            )
            raise ValueError("sweep_interval_seconds must not exceed idle_timeout_seconds")
        return self

    model_config = {"env_prefix": "RELAY_", "case_sensitive": False, "extra": "ignore"}


class ClientConfig(BaseSettings):
    """Connection lifecycle defaults for the client library."""

    url: str = Field(default="ws://127.0.0.1:8000/api/ws", description="Relay websocket URL")
    initial_delay: float = Field(default=1.0, description="First reconnection delay in seconds")
    max_delay: float = Field(default=5.0, description="Reconnection delay ceiling in seconds")
    multiplier: float = Field(default=2.0, description="Backoff growth factor")
    max_attempts: int = Field(default=5, description="Reconnection attempts before giving up")
    heartbeat_interval: float = Field(default=20.0, description="Seconds between heartbeats while connected")
    open_timeout: float = Field(default=10.0, description="Handshake timeout in seconds")

    @model_validator(mode="after")
    def validate_backoff(self) -> "ClientConfig":
        """Backoff must be bounded and non-decreasing."""
        if self.initial_delay <= 0 or self.max_delay < self.initial_delay:
            raise ValueError("Backoff requires 0 < initial_delay <= max_delay")
        if self.multiplier < 1:
            raise ValueError("Backoff multiplier must be at least 1")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must not be negative")
        return self

    model_config = {"env_prefix": "CLIENT_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="human", description="Log format")
    log_base: str = Field(default="logs", description="Base log directory")
    log_to_file: bool = Field(default=False, description="Also write rotating log files")
    rotation_max_bytes: int = Field(default=10 * 1024 * 1024, description="Log rotation max size in bytes")
    rotation_backup_count: int = Field(default=5, description="Number of backup log files")
    disable_logging: bool = Field(default=False, description="Disable all logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "e2e_test", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "human", "colored"]
        if v not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}, got '{v}'")
        return v

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_logging_dict(self) -> dict[str, Any]:
        """Dictionary shape consumed by setup_enhanced_logging."""
        return {
            "environment": self.environment,
            "level": self.level,
            "format": self.format,
            "log_base": self.log_base,
            "log_to_file": self.log_to_file,
            "rotation": {
                "max_bytes": self.rotation_max_bytes,
                "backup_count": self.rotation_backup_count,
            },
            "disable_logging": self.disable_logging,
        }


class CORSConfig(BaseSettings):
    """Cross-origin resource sharing configuration."""

    allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins permitted to access the collaboration API",
    )
    allow_credentials: bool = Field(default=True, description="Whether credentialed requests are accepted")
    allow_methods: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["GET", "POST", "OPTIONS"],
        description="HTTP methods permitted by CORS responses",
    )
    allow_headers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-Correlation-ID"],
        description="Request headers permitted by CORS responses",
    )
    max_age: int = Field(default=600, description="Seconds browsers may cache CORS preflight responses")

    @field_validator("allow_origins", "allow_methods", "allow_headers", mode="before")
    @classmethod
    def parse_list(cls, v: Any) -> list[str]:
        """Accept JSON lists or comma separated values."""
        return _parse_env_list(v)

    model_config = {"env_prefix": "CORS_", "case_sensitive": False, "extra": "ignore"}


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    This is the main configuration class that aggregates all other configs.
    Access via get_config().
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)  # type: ignore[arg-type]
    relay: RelayConfig = Field(default_factory=RelayConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_logging_dict(self) -> dict[str, Any]:
        """Configuration dictionary for setup_enhanced_logging."""
        return {"logging": self.logging.to_logging_dict()}
