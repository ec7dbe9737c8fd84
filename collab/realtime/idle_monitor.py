"""
Idle connection monitor.

Runs a background task that periodically asks the relay to close every
connection that has been silent for longer than the idle timeout. The close
performs the same cleanup as a transport close.
"""

import asyncio

from ..logging.enhanced_logging_config import get_logger
from .event_relay import EventRelay

logger = get_logger(__name__)


class IdleMonitor:
    """Periodic idle sweep for one relay."""

    def __init__(self, relay: EventRelay, sweep_interval_seconds: float = 5.0) -> None:
        self.relay = relay
        self.sweep_interval_seconds = sweep_interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep task on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="collab-idle-monitor")
        logger.info(
            "Idle monitor started",
            sweep_interval=self.sweep_interval_seconds,
            idle_timeout=self.relay.idle_timeout_seconds,
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Idle monitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep_once()

    def sweep_once(self) -> list[str]:
        """Run one sweep; a failing sweep is logged and the monitor keeps running."""
        try:
            closed = self.relay.sweep_idle()
            self.relay.rate_limiter.cleanup_old_attempts()
            return closed
        except Exception as e:  # noqa: BLE001  # Reason: one bad sweep must not stop future sweeps
            logger.error("Idle sweep failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            return []
