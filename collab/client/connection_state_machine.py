"""
Client connection state machine.

Tracks one client's view of its relay connection, including the backoff
phase between reconnection attempts. The lifecycle manager drives it; nothing
else changes its state.
"""

from datetime import UTC, datetime
from typing import Any

from statemachine import State, StateMachine

from ..logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ClientConnectionStateMachine(StateMachine):
    """
    State machine for the client side of a relay connection.

    States:
    - idle: never connected
    - connecting: handshake in progress
    - connected: handshake succeeded, events flow
    - backing_off: waiting before the next reconnection attempt
    - disconnected: given up, or disconnected deliberately

    Transitions:
    - idle/disconnected → connecting: start_connect
    - connecting → connected: handshake_succeeded
    - connecting → backing_off: handshake_failed
    - connected → backing_off: connection_lost
    - backing_off → connecting: retry
    - backing_off → disconnected: give_up (attempts exhausted)
    - any other state → disconnected: shutdown
    """

    idle = State("Idle", initial=True)
    connecting = State("Connecting")
    connected = State("Connected")
    backing_off = State("Backing Off")
    disconnected = State("Disconnected")

    start_connect = idle.to(connecting) | disconnected.to(connecting)
    handshake_succeeded = connecting.to(connected)
    handshake_failed = connecting.to(backing_off)
    connection_lost = connected.to(backing_off)
    retry = backing_off.to(connecting)
    give_up = backing_off.to(disconnected)
    shutdown = idle.to(disconnected) | connecting.to(disconnected) | connected.to(disconnected) | backing_off.to(
        disconnected
    )

    def __init__(self, client_id: str):
        # Set attributes BEFORE super().__init__() because on_enter_state is called during init
        self.client_id = client_id
        self.reconnect_attempts = 0
        self.total_connections = 0
        self.total_disconnections = 0
        self.last_connected_time: datetime | None = None
        self.last_error: Exception | None = None

        super().__init__()

    def on_enter_state(self, state: State, event=None, **kwargs) -> None:
        logger.debug(
            "Client connection state transition",
            client_id=self.client_id,
            trigger_event=str(event) if event else "initial",
            to_state=state.id,
            reconnect_attempts=self.reconnect_attempts,
        )

    def on_handshake_succeeded(self) -> None:
        self.last_connected_time = datetime.now(UTC)
        self.total_connections += 1
        self.reconnect_attempts = 0

    def on_handshake_failed(self, error: Exception | None = None) -> None:
        """
        Handler for a failed handshake.

        Args:
            error: Exception raised by the connection attempt
        """
        self.last_error = error
        logger.warning(
            "Relay handshake failed",
            client_id=self.client_id,
            error=str(error) if error else "unknown",
            error_type=type(error).__name__ if error else None,
        )

    def on_connection_lost(self, error: Exception | None = None) -> None:
        self.last_error = error
        self.total_disconnections += 1
        logger.info("Relay connection lost", client_id=self.client_id, error=str(error) if error else None)

    def on_retry(self) -> None:
        self.reconnect_attempts += 1

    def on_give_up(self) -> None:
        logger.warning(
            "Relay reconnection attempts exhausted",
            client_id=self.client_id,
            attempts=self.reconnect_attempts,
        )

    def on_shutdown(self, source: State) -> None:
        if source == self.connected:
            self.total_disconnections += 1

    @property
    def state_id(self) -> str:
        return self.current_state.id

    @property
    def is_connected(self) -> bool:
        return self.current_state == self.connected

    def get_stats(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "current_state": self.current_state.id,
            "reconnect_attempts": self.reconnect_attempts,
            "total_connections": self.total_connections,
            "total_disconnections": self.total_disconnections,
            "last_connected": self.last_connected_time.isoformat() if self.last_connected_time else None,
            "last_error": str(self.last_error) if self.last_error else None,
        }
