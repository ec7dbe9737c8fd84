"""
Per-connection lifecycle state machine for the event relay.

Every relay connection moves through Connecting -> Authenticated -> Active ->
Closed. The transitions declared here are the only way a connection's state
changes, which keeps the lifecycle testable without any transport attached.
"""

from datetime import UTC, datetime
from typing import Any

from statemachine import State, StateMachine

from ..logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class RelayConnectionStateMachine(StateMachine):
    """
    State machine for one relay connection.

    States:
    - connecting: transport handshake in progress, principal not yet resolved
    - authenticated: principal resolved, no room joined yet
    - active: at least one room join has succeeded (capability, not a count)
    - closed: terminal; cleanup has run

    Transitions:
    - connecting → authenticated: authenticate
    - connecting → closed: reject (authentication failure)
    - authenticated → active: activate_session (first successful join)
    - any open state → closed: terminate
    """

    connecting = State("Connecting", initial=True)
    authenticated = State("Authenticated")
    active = State("Active")
    closed = State("Closed", final=True)

    authenticate = connecting.to(authenticated)
    reject = connecting.to(closed)
    activate_session = authenticated.to(active)
    terminate = connecting.to(closed) | authenticated.to(closed) | active.to(closed)

    def __init__(self, connection_id: str):
        """
        Initialize the connection state machine.

        Args:
            connection_id: Unique identifier of the transport-level handshake
        """
        # Set attributes BEFORE super().__init__() because on_enter_state is called during init
        self.connection_id = connection_id
        self.user_id: str | None = None
        self.opened_at = datetime.now(UTC)
        self.authenticated_at: datetime | None = None
        self.activated_at: datetime | None = None
        self.closed_at: datetime | None = None
        self.close_reason: str | None = None

        super().__init__()

    def on_enter_state(self, state: State, event=None, **kwargs) -> None:
        """
        Called whenever the machine enters a new state.

        Args:
            state: New state being entered
            event: Event that triggered the transition (optional)
            **kwargs: Additional event data from state machine
        """
        logger.debug(
            "Relay connection state transition",
            connection_id=self.connection_id,
            user_id=self.user_id,
            trigger_event=str(event) if event else "initial",
            to_state=state.id,
        )

    def on_authenticate(self, user_id: str | None = None) -> None:
        self.user_id = user_id
        self.authenticated_at = datetime.now(UTC)

    def on_reject(self, reason: str = "authentication_failed") -> None:
        self.close_reason = reason
        self.closed_at = datetime.now(UTC)
        logger.warning("Relay connection rejected", connection_id=self.connection_id, reason=reason)

    def on_activate_session(self) -> None:
        self.activated_at = datetime.now(UTC)

    def on_terminate(self, reason: str = "closed") -> None:
        """
        Handler for the terminal transition.

        Args:
            reason: Why the connection closed (transport_closed, idle_timeout, ...)
        """
        self.close_reason = reason
        self.closed_at = datetime.now(UTC)
        logger.info(
            "Relay connection closed",
            connection_id=self.connection_id,
            user_id=self.user_id,
            reason=reason,
        )

    @property
    def state_id(self) -> str:
        return self.current_state.id

    @property
    def is_closed(self) -> bool:
        return self.current_state == self.closed

    @property
    def can_use_rooms(self) -> bool:
        """Room operations require an authenticated principal."""
        return self.current_state in (self.authenticated, self.active)

    def get_stats(self) -> dict[str, Any]:
        """
        Get connection lifecycle statistics.

        Returns:
            Dictionary with lifecycle timestamps and close reason
        """
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "current_state": self.current_state.id,
            "opened_at": self.opened_at.isoformat(),
            "authenticated_at": self.authenticated_at.isoformat() if self.authenticated_at else None,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "close_reason": self.close_reason,
        }
