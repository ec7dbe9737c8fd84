"""
Enhanced structlog-based logging configuration for the collaboration server.

This module provides the logging system shared by the relay, the HTTP API and
the client library: MDC-style context variables, correlation IDs, sensitive
value redaction and optional rotating file output.

CRITICAL LOGGING REQUIREMENT:
All modules MUST use get_logger() from this module instead of
logging.getLogger(). Standard library loggers do not accept the keyword
context that every call site in this package passes.

CORRECT USAGE:
    from ..logging.enhanced_logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Member joined", document_id=document_id, user_id=user_id)
"""

import json
import logging
import os
import sys
import threading
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    merge_contextvars,
)
from structlog.stdlib import BoundLogger, LoggerFactory

VALID_ENVIRONMENTS = ("local", "unit_test", "e2e_test", "production")

# Credentials travel on every websocket handshake (query token or subprotocol
# header); keys containing any of these fragments are redacted before rendering.
SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "credential",
    "jwt",
    "api_key",
    "private_key",
    "bearer",
    "authorization",
)

_LOGGING_INITIALIZED = False
_LOGGING_SIGNATURE: str | None = None
_setup_lock = threading.Lock()


def _resolve_log_base(log_base: str) -> Path:
    """Anchor a relative log directory at the nearest directory holding pyproject.toml."""
    log_path = Path(log_base)
    if log_path.is_absolute():
        return log_path
    cwd = Path.cwd()
    root = next((p for p in (cwd, *cwd.parents) if (p / "pyproject.toml").exists()), cwd)
    return root / log_path


def detect_environment() -> str:
    """
    Work out which logging environment we are running in.

    pytest always wins; otherwise COLLAB_ENV, then LOGGING_ENVIRONMENT, then
    "local".
    """
    if "pytest" in sys.modules or "pytest" in sys.argv[0]:
        return "unit_test"
    for variable in ("COLLAB_ENV", "LOGGING_ENVIRONMENT"):
        candidate = os.getenv(variable, "")
        if candidate in VALID_ENVIRONMENTS:
            return candidate
    return "local"


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and any(fragment in key.lower() for fragment in SENSITIVE_KEY_FRAGMENTS)


def _redact(mapping: dict[str, Any]) -> dict[str, Any]:
    return {
        key: "[REDACTED]" if _is_sensitive(key) else _redact(value) if isinstance(value, dict) else value
        for key, value in mapping.items()
    }


def sanitize_sensitive_data(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor that redacts credential-looking keys, nested dicts included."""
    return _redact(event_dict)


def add_correlation_id(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add correlation ID to log entries if not already present.

    Bound request or connection context (see bind_request_context) wins over
    the generated value because merge_contextvars runs first.
    """
    event_dict.setdefault("correlation_id", str(uuid.uuid4()))
    return event_dict


def _select_renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer(default=str)
    if log_format == "colored":
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"])


def configure_enhanced_structlog(
    environment: str | None = None,
    log_level: str = "INFO",
    log_config: dict[str, Any] | None = None,
) -> None:
    """
    Configure structlog with MDC, redaction and correlation support.

    Args:
        environment: Environment name (auto-detected if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_config: Logging configuration dictionary
    """
    if environment is None:
        environment = detect_environment()
    log_config = log_config or {}

    base_processors: list[Any] = [
        merge_contextvars,
        sanitize_sensitive_data,
        add_correlation_id,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    _setup_stdlib_logging(environment, log_config, log_level)

    structlog.configure(
        processors=base_processors + [_select_renderer(log_config.get("format", "human"))],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )


def _setup_stdlib_logging(environment: str, log_config: dict[str, Any], log_level: str) -> None:
    """Attach console and (optionally) rotating file handlers to the root logger."""
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, "_collab_handler", False):
            root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler._collab_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(console_handler)

    if log_config.get("disable_logging", False) or not log_config.get("log_to_file", False):
        return

    env_log_dir = _resolve_log_base(log_config.get("log_base", "logs")) / environment
    try:
        env_log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        # Logging must not prevent startup because a directory is missing
        root_logger.warning("Failed to create log directory %s: %s", env_log_dir, e)
        return

    rotation = log_config.get("rotation", {})
    file_handler = RotatingFileHandler(
        env_log_dir / "collab.log",
        maxBytes=int(rotation.get("max_bytes", 10 * 1024 * 1024)),
        backupCount=int(rotation.get("backup_count", 5)),
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    file_handler._collab_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(file_handler)


def setup_enhanced_logging(config: dict[str, Any], *, force_reconfigure: bool = False) -> None:
    """
    Set up logging from the application configuration dictionary.

    Args:
        config: Configuration dictionary (see AppConfig.to_logging_dict)
        force_reconfigure: When True, tear down existing handlers before reconfiguring
    """
    global _LOGGING_INITIALIZED
    global _LOGGING_SIGNATURE

    config_signature = json.dumps(config, sort_keys=True, default=str)

    with _setup_lock:
        if _LOGGING_INITIALIZED and not force_reconfigure:
            get_logger("collab.logging.setup").debug(
                "setup_enhanced_logging skipped; logging system already initialized",
                config_signature=_LOGGING_SIGNATURE,
            )
            return

        logging_config = config.get("logging", {})
        environment = logging_config.get("environment", detect_environment())
        log_level = logging_config.get("level", "INFO")

        if logging_config.get("disable_logging", False):
            configure_enhanced_structlog(environment, "CRITICAL", {"disable_logging": True})
        else:
            configure_enhanced_structlog(environment, log_level, logging_config)
            _configure_uvicorn_logging()

        _LOGGING_INITIALIZED = True
        _LOGGING_SIGNATURE = config_signature

    get_logger("collab.logging.enhanced").info(
        "Enhanced logging system initialized",
        environment=environment,
        log_level=log_level,
        log_format=logging_config.get("format", "human"),
    )


def _configure_uvicorn_logging() -> None:
    """Route uvicorn's loggers through the root handlers configured above."""
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True


def bind_request_context(
    correlation_id: str | None = None,
    user_id: str | None = None,
    connection_id: str | None = None,
    request_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Bind request or connection context to the current logging context.

    Args:
        correlation_id: Unique correlation ID (generated if omitted)
        user_id: Authenticated user ID if available
        connection_id: Websocket connection ID if available
        request_id: Request ID if available
        **kwargs: Additional context variables
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context_vars = {
        "correlation_id": correlation_id,
        "user_id": user_id,
        "connection_id": connection_id,
        "request_id": request_id,
        **kwargs,
    }
    bind_contextvars(**{k: v for k, v in context_vars.items() if v is not None})


def clear_request_context() -> None:
    """Clear the current request context from logging."""
    clear_contextvars()


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    return structlog.contextvars.get_contextvars()


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a structlog logger with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)
