"""
Rate limiting for relay connections.

This module provides sliding-window limits for authentication handshakes
(per user) and inbound events (per connection).
"""

import time
from collections.abc import Callable
from typing import Any

from ..logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Rate limiter for handshakes and inbound events.

    Each key keeps the timestamps of its recent attempts; attempts older than
    the window are discarded on every check.
    """

    def __init__(
        self,
        max_connection_attempts: int = 20,
        connection_window: int = 60,
        max_messages_per_window: int = 240,
        message_window: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the rate limiter with configurable settings.

        Args:
            max_connection_attempts: Maximum handshakes per user per window
            connection_window: Handshake window in seconds
            max_messages_per_window: Maximum inbound events per connection per window
            message_window: Inbound event window in seconds
            clock: Monotonic time source
        """
        self.connection_attempts: dict[str, list[float]] = {}
        self.max_connection_attempts = max_connection_attempts
        self.connection_window = connection_window

        self.message_attempts: dict[str, list[float]] = {}
        self.max_messages_per_window = max_messages_per_window
        self.message_window = message_window

        self._clock = clock

    def _check(self, attempts: dict[str, list[float]], key: str, limit: int, window: int) -> bool:
        current_time = self._clock()
        recent = [t for t in attempts.get(key, []) if current_time - t < window]
        if len(recent) >= limit:
            attempts[key] = recent
            return False
        recent.append(current_time)
        attempts[key] = recent
        return True

    def check_rate_limit(self, user_id: str) -> bool:
        """
        Check and record a handshake attempt for a user.

        Returns:
            bool: True if the attempt is allowed, False if the limit is exceeded
        """
        allowed = self._check(self.connection_attempts, user_id, self.max_connection_attempts, self.connection_window)
        if not allowed:
            logger.warning("Connection rate limit exceeded", user_id=user_id)
        return allowed

    def check_message_rate_limit(self, connection_id: str) -> bool:
        """
        Check and record an inbound event for a connection.

        Returns:
            bool: True if the event is allowed, False if the limit is exceeded
        """
        allowed = self._check(
            self.message_attempts, connection_id, self.max_messages_per_window, self.message_window
        )
        if not allowed:
            logger.warning(
                "Message rate limit exceeded",
                connection_id=connection_id,
                max_messages=self.max_messages_per_window,
                window_seconds=self.message_window,
            )
        return allowed

    def get_message_rate_limit_info(self, connection_id: str) -> dict[str, Any]:
        """
        Get message rate limit information for a connection.

        Returns:
            dict: attempts, limit, window and remaining allowance
        """
        current_time = self._clock()
        recent = [t for t in self.message_attempts.get(connection_id, []) if current_time - t < self.message_window]
        return {
            "attempts": len(recent),
            "max_attempts": self.max_messages_per_window,
            "window_seconds": self.message_window,
            "attempts_remaining": max(0, self.max_messages_per_window - len(recent)),
            "retry_after": int(self.message_window - (current_time - recent[0])) + 1 if recent else 0,
        }

    def remove_connection_message_data(self, connection_id: str) -> None:
        """Forget a closed connection's message history."""
        if self.message_attempts.pop(connection_id, None) is not None:
            logger.debug("Removed message rate limit data", connection_id=connection_id)

    def cleanup_old_attempts(self) -> None:
        """Drop handshake histories whose attempts have all left the window."""
        current_time = self._clock()
        orphaned = []
        for user_id, attempts in list(self.connection_attempts.items()):
            recent = [t for t in attempts if current_time - t < self.connection_window]
            if recent:
                self.connection_attempts[user_id] = recent
            else:
                orphaned.append(user_id)
        for user_id in orphaned:
            del self.connection_attempts[user_id]
        if orphaned:
            logger.debug("Cleaned up rate limit data", user_count=len(orphaned))

    def get_stats(self) -> dict[str, Any]:
        """
        Get rate limiter statistics.

        Returns:
            dict: Statistics about current rate limiting state
        """
        return {
            "tracked_users": len(self.connection_attempts),
            "tracked_connections": len(self.message_attempts),
            "max_connection_attempts": self.max_connection_attempts,
            "connection_window_seconds": self.connection_window,
            "max_messages_per_window": self.max_messages_per_window,
            "message_window_seconds": self.message_window,
        }
