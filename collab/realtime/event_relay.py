"""
Event relay for real-time document collaboration.

The relay is the single entry and exit point of real-time traffic. It turns
inbound client intents into session registry mutations and fans the resulting
events out to the other members of the affected room.

Ordering: every registry mutation and the enqueueing of its fan-out happen
inside one critical section guarded by ``self._lock``. Each connection drains
its own FIFO outbox, so every member observes a room's events in exactly the
order they were applied to the registry.

Relay methods are synchronous and perform no I/O; they must be called from
the event loop that owns the connections' outboxes.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..error_types import ErrorMessages, ErrorType, create_websocket_error_response
from ..exceptions import AuthenticationFailure, CapacityFailure, CollabError, ProtocolViolation, create_error_context
from ..logging.enhanced_logging_config import get_logger
from ..schemas.realtime.websocket_messages import (
    CursorUpdateMessage,
    EditMessage,
    HeartbeatMessage,
    InboundMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
)
from . import envelope
from .connection_models import Principal, RelayConnection
from .connection_state_machine import RelayConnectionStateMachine
from .rate_limiter import RateLimiter
from .session_registry import PresenceEntry, SessionRegistry

if TYPE_CHECKING:
    from ..config.models import RelayConfig

logger = get_logger(__name__)

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011


class EventRelay:
    """
    Fan-out switch keyed by room membership.

    The relay owns the session registry and every RelayConnection; nothing
    else mutates either. Payloads are relayed verbatim and never inspected.
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        rate_limiter: RateLimiter | None = None,
        *,
        idle_timeout_seconds: float = 60.0,
        outbox_size: int = 256,
        max_rooms_per_connection: int = 64,
        max_capacity_violations: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry or SessionRegistry()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.idle_timeout_seconds = idle_timeout_seconds
        self.outbox_size = outbox_size
        self.max_rooms_per_connection = max_rooms_per_connection
        self.max_capacity_violations = max_capacity_violations
        self._clock = clock

        self._connections: dict[str, RelayConnection] = {}
        self._user_connections: dict[str, set[str]] = {}
        self._lock = threading.RLock()
        self._sequence = envelope.SequenceCounter()

        self.total_opened = 0
        self.total_closed = 0
        self.close_reasons: Counter[str] = Counter()

    @classmethod
    def from_config(cls, config: RelayConfig) -> EventRelay:
        """Build a relay and its rate limiter from relay configuration."""
        rate_limiter = RateLimiter(
            max_connection_attempts=config.max_connection_attempts,
            connection_window=config.connection_window_seconds,
            max_messages_per_window=config.max_messages_per_window,
            message_window=config.message_window_seconds,
        )
        return cls(
            rate_limiter=rate_limiter,
            idle_timeout_seconds=config.idle_timeout_seconds,
            outbox_size=config.outbox_size,
            max_rooms_per_connection=config.max_rooms_per_connection,
            max_capacity_violations=config.max_capacity_violations,
        )

    # Connection lifecycle

    def open_connection(self, connection_id: str | None = None) -> RelayConnection:
        """
        Register a connection whose transport handshake has started.

        Returns:
            RelayConnection: The new connection, in the connecting state
        """
        connection_id = connection_id or str(uuid.uuid4())
        with self._lock:
            if connection_id in self._connections:
                raise ValueError(f"Connection {connection_id} already exists")
            connection = RelayConnection(
                connection_id=connection_id,
                state=RelayConnectionStateMachine(connection_id),
                outbox=asyncio.Queue(maxsize=self.outbox_size),
                last_seen=self._clock(),
            )
            self._connections[connection_id] = connection
            self.total_opened += 1
        logger.debug("Relay connection opened", connection_id=connection_id)
        return connection

    def authenticate(self, connection_id: str, principal: Principal | None) -> RelayConnection:
        """
        Resolve the principal of a connecting connection.

        A missing principal, or a user over the handshake rate limit, moves
        the connection straight to closed.

        Raises:
            AuthenticationFailure: If no principal could be resolved
            CapacityFailure: If the user exceeded the handshake rate limit
        """
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None or connection.state.current_state != connection.state.connecting:
                raise ProtocolViolation(
                    "Authentication outside of the connecting state",
                    create_error_context(connection_id=connection_id),
                    operation="authenticate",
                )

            if principal is None:
                self._reject(connection, "authentication_failed")
                raise AuthenticationFailure(
                    "Session credentials could not be verified",
                    create_error_context(connection_id=connection_id),
                    user_friendly=ErrorMessages.INVALID_TOKEN,
                )

            if not self.rate_limiter.check_rate_limit(principal.user_id):
                self._reject(connection, "handshake_rate_limited")
                raise CapacityFailure(
                    "Too many connection attempts",
                    create_error_context(connection_id=connection_id, user_id=principal.user_id),
                    limit_type="handshake_rate",
                    retry_after=self.rate_limiter.connection_window,
                    user_friendly=ErrorMessages.RATE_LIMIT_EXCEEDED,
                )

            connection.principal = principal
            connection.last_seen = self._clock()
            connection.state.authenticate(user_id=principal.user_id)
            self._user_connections.setdefault(principal.user_id, set()).add(connection_id)

            self._enqueue(
                connection,
                self._event(
                    envelope.WELCOME,
                    {
                        "connectionId": connection_id,
                        "userId": principal.user_id,
                        "displayName": principal.display_name,
                        "idleTimeoutSeconds": self.idle_timeout_seconds,
                    },
                ),
            )

        logger.info(
            "Relay connection authenticated",
            connection_id=connection_id,
            user_id=principal.user_id,
            display_name=principal.display_name,
        )
        return connection

    def _reject(self, connection: RelayConnection, reason: str) -> None:
        connection.state.reject(reason=reason)
        connection.close_code = CLOSE_POLICY_VIOLATION
        connection.close_reason = reason
        self._connections.pop(connection.connection_id, None)
        self.total_closed += 1
        self.close_reasons[reason] += 1

    def close_connection(self, connection_id: str, reason: str = "transport_closed", code: int = CLOSE_NORMAL) -> bool:
        """
        Close a connection and run its cleanup.

        Cleanup leaves every room the connection was in, broadcasting
        member-left to the remaining members, and runs exactly once no matter
        how many times or from where this is called.

        Returns:
            bool: True if this call performed the cleanup
        """
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None or connection.is_closed:
                return False

            connection.state.terminate(reason=reason)
            connection.close_code = code
            connection.close_reason = reason

            for entry in self.registry.remove_connection(connection_id):
                self._fan_out(entry.document_id, envelope.MEMBER_LEFT, _member_left_data(entry))

            del self._connections[connection_id]
            if connection.user_id is not None:
                user_connections = self._user_connections.get(connection.user_id)
                if user_connections is not None:
                    user_connections.discard(connection_id)
                    if not user_connections:
                        del self._user_connections[connection.user_id]
            self.rate_limiter.remove_connection_message_data(connection_id)

            self._stop_writer(connection)
            self.total_closed += 1
            self.close_reasons[reason] += 1

        logger.info(
            "Relay connection cleaned up",
            connection_id=connection_id,
            user_id=connection.user_id,
            reason=reason,
            close_code=code,
        )
        return True

    def close_all(self, reason: str = "server_shutdown", code: int = CLOSE_GOING_AWAY) -> int:
        """Close every open connection, e.g. on shutdown. Returns the number closed."""
        with self._lock:
            closed = [cid for cid in list(self._connections) if self.close_connection(cid, reason=reason, code=code)]
        if closed:
            logger.info("All relay connections closed", count=len(closed), reason=reason)
        return len(closed)

    def touch(self, connection_id: str) -> None:
        """Record inbound activity on a connection."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_seen = self._clock()

    heartbeat = touch

    def sweep_idle(self, now: float | None = None) -> list[str]:
        """
        Close every connection idle for longer than the idle timeout.

        Returns:
            list[str]: Ids of the connections closed by this sweep
        """
        now = self._clock() if now is None else now
        with self._lock:
            idle = [
                connection_id
                for connection_id, connection in self._connections.items()
                if now - connection.last_seen > self.idle_timeout_seconds
            ]
            closed = [
                connection_id
                for connection_id in idle
                if self.close_connection(connection_id, reason="idle_timeout", code=CLOSE_NORMAL)
            ]
        if closed:
            logger.info("Idle connections closed", count=len(closed), idle_timeout=self.idle_timeout_seconds)
        return closed

    # Room operations

    def join(self, connection_id: str, document_id: str) -> PresenceEntry:
        """
        Join a document room.

        Broadcasts member-joined to every other member; the joining connection
        gets no acknowledgement. Repeating a join is a no-op and broadcasts
        nothing.

        Raises:
            ProtocolViolation: If the connection is not authenticated
            CapacityFailure: If the connection is already in too many rooms
        """
        with self._lock:
            connection = self._require_room_capable(connection_id, "join", document_id)

            if self.registry.is_member(document_id, connection_id):
                return next(
                    entry for entry in self.registry.members_of(document_id) if entry.connection_id == connection_id
                )

            if len(self.registry.rooms_of(connection_id)) >= self.max_rooms_per_connection:
                raise CapacityFailure(
                    "Connection is a member of too many rooms",
                    create_error_context(
                        connection_id=connection_id, user_id=connection.user_id, document_id=document_id
                    ),
                    limit_type="rooms",
                    user_friendly=ErrorMessages.TOO_MANY_ROOMS,
                )

            entry = self.registry.join(document_id, connection_id, connection.user_id, connection.display_name)
            if connection.state.current_state == connection.state.authenticated:
                connection.state.activate_session()

            self._fan_out(
                document_id,
                envelope.MEMBER_JOINED,
                {
                    "documentId": document_id,
                    "userId": entry.user_id,
                    "displayName": entry.display_name,
                    "connectionId": connection_id,
                },
                exclude=connection_id,
            )
        logger.info("Joined document room", connection_id=connection_id, user_id=entry.user_id, document_id=document_id)
        return entry

    def leave(self, connection_id: str, document_id: str) -> bool:
        """
        Leave a document room and broadcast member-left to the remaining members.

        Returns:
            bool: False if the connection was not a member (logged, not raised)
        """
        with self._lock:
            entry = self.registry.leave(document_id, connection_id)
            if entry is None:
                logger.info("Leave from non-member dropped", connection_id=connection_id, document_id=document_id)
                return False
            self._fan_out(document_id, envelope.MEMBER_LEFT, _member_left_data(entry))
        logger.info("Left document room", connection_id=connection_id, user_id=entry.user_id, document_id=document_id)
        return True

    def edit(self, connection_id: str, document_id: str, content: Any) -> int:
        """
        Relay a content snapshot to every other member of the room.

        Returns:
            int: Number of connections the edit was queued for
        """
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None or not self.registry.is_member(document_id, connection_id):
                logger.info("Edit from non-member dropped", connection_id=connection_id, document_id=document_id)
                return 0
            return self._fan_out(
                document_id,
                envelope.EDIT_BROADCAST,
                {
                    "documentId": document_id,
                    "content": content,
                    "userId": connection.user_id,
                    "connectionId": connection_id,
                },
                exclude=connection_id,
            )

    def cursor_update(self, connection_id: str, document_id: str, position: Any) -> int:
        """
        Record a cursor position and relay it to every other member of the room.

        Malformed positions and updates from non-members are dropped without
        any broadcast.

        Returns:
            int: Number of connections the cursor event was queued for
        """
        if not isinstance(position, dict | list):
            logger.debug("Malformed cursor position dropped", connection_id=connection_id, document_id=document_id)
            return 0
        with self._lock:
            entry = self.registry.update_cursor(document_id, connection_id, position)
            if entry is None:
                return 0
            return self._fan_out(
                document_id,
                envelope.CURSOR_BROADCAST,
                {
                    "documentId": document_id,
                    "userId": entry.user_id,
                    "connectionId": connection_id,
                    "position": position,
                },
                exclude=connection_id,
            )

    def handle_event(self, connection_id: str, message: InboundMessage) -> None:
        """
        Dispatch one validated inbound message.

        Failures never propagate: a failed join is answered with an error
        event to the originating connection only, everything else is logged
        and dropped.
        """
        self.touch(connection_id)
        match message:
            case JoinRoomMessage():
                try:
                    self.join(connection_id, message.document_id)
                except CapacityFailure as e:
                    self.send_error(
                        connection_id,
                        ErrorType.TOO_MANY_ROOMS,
                        e.message,
                        e.user_friendly,
                        {"documentId": message.document_id},
                    )
                except CollabError as e:
                    self.send_error(
                        connection_id,
                        ErrorType.JOIN_REJECTED,
                        e.message,
                        ErrorMessages.JOIN_REJECTED,
                        {"documentId": message.document_id},
                    )
            case LeaveRoomMessage():
                self.leave(connection_id, message.document_id)
            case EditMessage():
                self.edit(connection_id, message.document_id, message.content)
            case CursorUpdateMessage():
                self.cursor_update(connection_id, message.document_id, message.position)
            case HeartbeatMessage():
                pass

    def _require_room_capable(self, connection_id: str, operation: str, document_id: str) -> RelayConnection:
        connection = self._connections.get(connection_id)
        if connection is None or not connection.state.can_use_rooms:
            raise ProtocolViolation(
                "Room operation on a connection that is not authenticated",
                create_error_context(connection_id=connection_id, document_id=document_id, event_type=operation),
                operation=operation,
            )
        return connection

    # Server-originated events

    def notify_user(self, user_id: str, notification_type: str, message: str) -> int:
        """
        Route a notification to every live connection of one user, independent of room membership.

        Returns:
            int: Number of connections the notification was queued for
        """
        with self._lock:
            event = self._event(
                envelope.NOTIFICATION,
                {"type": notification_type, "message": message, "userId": user_id},
            )
            targets = [self._connections[cid] for cid in sorted(self._user_connections.get(user_id, set()))]
            delivered = self._deliver(targets, event)
        logger.debug("Notification routed", user_id=user_id, notification_type=notification_type, delivered=delivered)
        return delivered

    def broadcast_comment(self, document_id: str, comment_id: str, content: str, user_id: str) -> int:
        """
        Push a newly created comment to every member of a document room.

        Returns:
            int: Number of connections the event was queued for
        """
        with self._lock:
            delivered = self._fan_out(
                document_id,
                envelope.COMMENT_CREATED,
                {"documentId": document_id, "commentId": comment_id, "content": content, "userId": user_id},
            )
        logger.debug("Comment event broadcast", document_id=document_id, comment_id=comment_id, delivered=delivered)
        return delivered

    def send_error(
        self,
        connection_id: str,
        error_type: ErrorType,
        message: str,
        user_friendly: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Queue an error event for one connection only."""
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None or connection.is_closed:
                return False
            overflowed = not self._enqueue(
                connection, create_websocket_error_response(error_type, message, user_friendly, details)
            )
            if overflowed:
                self._close_slow_consumers([connection])
            return not overflowed

    def record_capacity_violation(self, connection_id: str, limit_type: str) -> bool:
        """
        Count a capacity violation against a connection.

        Returns:
            bool: True if the violation forced the connection closed
        """
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None or connection.is_closed:
                return False
            connection.capacity_violations += 1
            logger.warning(
                "Capacity violation recorded",
                connection_id=connection_id,
                user_id=connection.user_id,
                limit_type=limit_type,
                violations=connection.capacity_violations,
                max_violations=self.max_capacity_violations,
            )
            if connection.capacity_violations >= self.max_capacity_violations:
                return self.close_connection(connection_id, reason="capacity_exceeded", code=CLOSE_POLICY_VIOLATION)
            return False

    # Fan-out

    def _event(self, event_type: str, data: dict[str, Any], document_id: str | None = None) -> dict[str, Any]:
        return envelope.build_event(
            event_type, data, document_id=document_id, sequence_number=self._sequence.next()
        )

    def _fan_out(self, document_id: str, event_type: str, data: dict[str, Any], exclude: str | None = None) -> int:
        """Queue one event for every member of a room except ``exclude``. Caller holds the lock."""
        event = self._event(event_type, data, document_id=document_id)
        targets = [
            self._connections[cid]
            for cid in self.registry.member_connection_ids(document_id)
            if cid != exclude and cid in self._connections
        ]
        return self._deliver(targets, event)

    def _deliver(self, targets: list[RelayConnection], event: dict[str, Any]) -> int:
        delivered = 0
        overflowed: list[RelayConnection] = []
        for connection in targets:
            if self._enqueue(connection, event):
                delivered += 1
            else:
                overflowed.append(connection)
        self._close_slow_consumers(overflowed)
        return delivered

    def _enqueue(self, connection: RelayConnection, event: dict[str, Any]) -> bool:
        if connection.is_closed:
            return False
        try:
            connection.outbox.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def _close_slow_consumers(self, connections: list[RelayConnection]) -> None:
        for connection in connections:
            if connection.is_closed:
                continue
            logger.warning(
                "Outbound queue overflow, closing slow consumer",
                connection_id=connection.connection_id,
                user_id=connection.user_id,
                outbox_size=self.outbox_size,
            )
            self.close_connection(connection.connection_id, reason="slow_consumer", code=CLOSE_POLICY_VIOLATION)

    def _stop_writer(self, connection: RelayConnection) -> None:
        """Wake the connection's writer with the stop sentinel, discarding undelivered events if full."""
        while True:
            try:
                connection.outbox.put_nowait(None)
                return
            except asyncio.QueueFull:
                connection.outbox.get_nowait()

    # Queries

    def members_of(self, document_id: str) -> list[PresenceEntry]:
        with self._lock:
            return self.registry.members_of(document_id)

    def rooms_of(self, connection_id: str) -> set[str]:
        with self._lock:
            return self.registry.rooms_of(connection_id)

    def get_connection(self, connection_id: str) -> RelayConnection | None:
        return self._connections.get(connection_id)

    def connections_of_user(self, user_id: str) -> list[RelayConnection]:
        with self._lock:
            return [self._connections[cid] for cid in sorted(self._user_connections.get(user_id, set()))]

    def get_stats(self) -> dict[str, Any]:
        """
        Get relay statistics.

        Returns:
            dict: Connection, room and rate limiter statistics
        """
        with self._lock:
            connections = list(self._connections.values())
            return {
                "open_connections": len(connections),
                "active_connections": sum(1 for c in connections if c.state.state_id == "active"),
                "connected_users": len(self._user_connections),
                "total_opened": self.total_opened,
                "total_closed": self.total_closed,
                "close_reasons": dict(self.close_reasons),
                **self.registry.get_stats(),
                "rate_limiter": self.rate_limiter.get_stats(),
            }


def _member_left_data(entry: PresenceEntry) -> dict[str, Any]:
    return {"documentId": entry.document_id, "userId": entry.user_id, "connectionId": entry.connection_id}
