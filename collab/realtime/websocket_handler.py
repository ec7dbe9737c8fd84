"""
WebSocket handler for the event relay.

Binds one Starlette WebSocket to one RelayConnection for the connection's
lifetime. A reader task feeds inbound frames to the relay; a writer task
drains the connection's outbox onto the socket. Whichever task ends first
ends the session, and cleanup runs once in ``finally``.
"""

import asyncio
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..error_types import ErrorMessages, ErrorType
from ..exceptions import (
    AuthenticationFailure,
    CapacityFailure,
    CollabError,
    ProtocolViolation,
    TransportFailure,
    create_error_context,
    handle_exception,
)
from ..logging.enhanced_logging_config import (
    bind_request_context,
    clear_request_context,
    get_current_context,
    get_logger,
)
from .connection_models import Principal, RelayConnection
from .event_relay import CLOSE_INTERNAL_ERROR, CLOSE_NORMAL, CLOSE_POLICY_VIOLATION, EventRelay
from .message_validator import WebSocketMessageValidator

logger = get_logger(__name__)


async def handle_websocket_connection(
    websocket: WebSocket,
    relay: EventRelay,
    principal: Principal | None,
    validator: WebSocketMessageValidator,
    subprotocol: str | None = None,
) -> None:
    """
    Run one relay session over a websocket.

    Args:
        websocket: The not yet accepted websocket
        relay: The event relay
        principal: Identity resolved from the handshake credentials, None if unresolved
        validator: Inbound frame validator
        subprotocol: Subprotocol to select on accept, echoing the client's offer
    """
    connection = relay.open_connection()
    connection_id = connection.connection_id
    try:
        relay.authenticate(connection_id, principal)
    except (AuthenticationFailure, CapacityFailure, ProtocolViolation) as e:
        logger.info("WebSocket handshake rejected", connection_id=connection_id, reason=type(e).__name__)
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=e.user_friendly[:120])
        return

    bind_request_context(
        correlation_id=get_current_context().get("correlation_id"),
        connection_id=connection_id,
        user_id=connection.user_id,
    )
    reason, code = "transport_closed", CLOSE_NORMAL
    tasks: list[asyncio.Task[Any]] = []
    try:
        await websocket.accept(subprotocol=subprotocol)
        logger.info("WebSocket session started", connection_id=connection_id, user_id=connection.user_id)

        reader = asyncio.create_task(_read_loop(websocket, relay, connection, validator))
        writer = asyncio.create_task(_write_loop(websocket, connection))
        tasks = [reader, writer]
        done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        # Not awaited: the server may cancel this scope as soon as the peer disconnects
        for task in pending:
            task.cancel()

        if reader in done:
            if reader.exception() is not None:
                logger.error(
                    "WebSocket reader failed",
                    connection_id=connection_id,
                    error=str(reader.exception()),
                    exc_info=reader.exception(),
                )
                reason, code = "internal_error", CLOSE_INTERNAL_ERROR
            else:
                reason, code = reader.result()
    finally:
        for task in tasks:
            task.cancel()
        relay.close_connection(connection_id, reason=reason, code=code)
        await _safe_close_websocket(websocket, connection.close_code or code)
        logger.info(
            "WebSocket session ended",
            connection_id=connection_id,
            user_id=connection.user_id,
            reason=connection.close_reason,
            close_code=connection.close_code,
        )
        clear_request_context()


async def _read_loop(
    websocket: WebSocket,
    relay: EventRelay,
    connection: RelayConnection,
    validator: WebSocketMessageValidator,
) -> tuple[str, int]:
    """Receive, rate-limit, validate and dispatch inbound frames until the session ends."""
    connection_id = connection.connection_id
    while True:
        try:
            message = await websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.info("WebSocket receive ended", connection_id=connection_id, error=str(e))
            return "transport_closed", CLOSE_NORMAL

        if message["type"] == "websocket.disconnect":
            logger.info("WebSocket disconnected", connection_id=connection_id, code=message.get("code"))
            return "transport_closed", CLOSE_NORMAL

        relay.touch(connection_id)
        data: Any = message.get("text")
        if data is None:
            data = message.get("bytes")

        if not relay.rate_limiter.check_message_rate_limit(connection_id):
            rate_limit_info = relay.rate_limiter.get_message_rate_limit_info(connection_id)
            relay.send_error(
                connection_id,
                ErrorType.RATE_LIMIT_EXCEEDED,
                f"Message rate limit exceeded. Limit: {rate_limit_info['max_attempts']} messages per "
                f"{rate_limit_info['window_seconds']} seconds.",
                ErrorMessages.RATE_LIMIT_EXCEEDED,
                {"retry_after": rate_limit_info["retry_after"]},
            )
            relay.record_capacity_violation(connection_id, "message_rate")
            continue

        try:
            parsed = validator.parse_and_validate(data, connection_id)
        except CapacityFailure as e:
            relay.send_error(connection_id, ErrorType.PAYLOAD_TOO_LARGE, e.message, ErrorMessages.PAYLOAD_TOO_LARGE)
            relay.record_capacity_violation(connection_id, e.limit_type)
            continue
        except TransportFailure as e:
            return "malformed_frame", e.close_code
        except ProtocolViolation as e:
            if e.details.get("message_type") == "join-room":
                relay.send_error(connection_id, ErrorType.INVALID_FORMAT, e.message, ErrorMessages.JOIN_REJECTED)
            continue

        try:
            relay.handle_event(connection_id, parsed)
        except CollabError as e:
            logger.warning("Relay rejected event", connection_id=connection_id, error=e.message)
        except Exception as e:  # noqa: BLE001  # Reason: a fault in one event must not end other sessions
            handle_exception(e, create_error_context(connection_id=connection_id, event_type=parsed.type))
            relay.send_error(
                connection_id,
                ErrorType.INTERNAL_ERROR,
                "Internal server error",
                ErrorMessages.INTERNAL_ERROR,
                {"message_type": parsed.type},
            )


async def _write_loop(websocket: WebSocket, connection: RelayConnection) -> None:
    """Send queued events in order until the stop sentinel arrives or the socket fails."""
    while True:
        event = await connection.outbox.get()
        if event is None:
            return
        try:
            await websocket.send_json(event)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.info("WebSocket send failed", connection_id=connection.connection_id, error=str(e))
            return


async def _safe_close_websocket(websocket: WebSocket, code: int) -> None:
    """Close the socket unless either side already closed it."""
    if websocket.application_state != WebSocketState.CONNECTED or websocket.client_state != WebSocketState.CONNECTED:
        return
    try:
        await websocket.close(code=code)
    except (RuntimeError, OSError) as e:
        logger.debug("WebSocket close after disconnect ignored", error=str(e))
