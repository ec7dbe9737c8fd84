"""
Reconnection backoff policy for the client lifecycle manager.

Bounded exponential backoff without jitter: the delay sequence is
non-decreasing, never exceeds the ceiling, and ends after a fixed number of
attempts.
"""

from dataclasses import dataclass

from ..config.models import ClientConfig


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Configuration for reconnection behavior.

    Defaults match a 1 second first retry, a 5 second ceiling and 5 attempts.
    """

    initial_delay: float = 1.0  # seconds
    max_delay: float = 5.0  # seconds
    multiplier: float = 2.0  # doubles delay each retry
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.initial_delay <= 0 or self.max_delay < self.initial_delay:
            raise ValueError("Backoff requires 0 < initial_delay <= max_delay")
        if self.multiplier < 1:
            raise ValueError("Backoff multiplier must be at least 1")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must not be negative")

    @classmethod
    def from_config(cls, config: ClientConfig) -> "ReconnectPolicy":
        return cls(
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            multiplier=config.multiplier,
            max_attempts=config.max_attempts,
        )

    def delay_for(self, attempt: int) -> float | None:
        """
        Delay before reconnection attempt ``attempt``.

        Args:
            attempt: Attempt number, starting at 1

        Returns:
            Delay in seconds, or None once the attempts are exhausted
        """
        if attempt < 1 or attempt > self.max_attempts:
            return None
        delay = self.initial_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def delays(self) -> list[float]:
        """The full delay sequence, one entry per allowed attempt."""
        return [self.delay_for(attempt) or 0.0 for attempt in range(1, self.max_attempts + 1)]
