"""
Configuration module for the collaboration server.

This module provides type-safe, validated configuration using Pydantic BaseSettings.

Usage:
    from collab.config import get_config

    config = get_config()
    logger.info("Relay configuration", idle_timeout=config.relay.idle_timeout_seconds)
"""

import sys
import threading
from functools import lru_cache
from os import getenv

from .models import AppConfig, ClientConfig, CORSConfig, LoggingConfig, RelayConfig, SecurityConfig, ServerConfig

__all__ = [
    "AppConfig",
    "ClientConfig",
    "CORSConfig",
    "LoggingConfig",
    "RelayConfig",
    "SecurityConfig",
    "ServerConfig",
    "get_config",
    "reset_config",
]

_config_instance: AppConfig | None = None
_config_lock = threading.Lock()


def _is_test_mode() -> bool:
    """
    Detect if running in test environment.

    Returns:
        bool: True if running under pytest, False otherwise
    """
    if "pytest" in sys.modules:
        return True
    return bool(getenv("PYTEST_CURRENT_TEST"))


@lru_cache(maxsize=1)
def _get_config_cached() -> AppConfig:
    """
    Production config loader with caching.

    Returns:
        AppConfig: Cached application configuration
    """
    global _config_instance
    with _config_lock:
        if _config_instance is None:
            _config_instance = AppConfig()
    return _config_instance


def get_config() -> AppConfig:
    """
    Get application configuration (singleton in production, fresh in tests).

    Fresh instances under pytest keep tests that monkeypatch the environment
    isolated from each other.

    Returns:
        AppConfig: The application configuration

    Raises:
        ValidationError: If configuration is invalid or required fields are missing
    """
    if _is_test_mode():
        return AppConfig()
    return _get_config_cached()


def reset_config() -> None:
    """Reset the configuration cache so the next get_config() reloads the environment."""
    global _config_instance
    with _config_lock:
        _get_config_cached.cache_clear()
        _config_instance = None
