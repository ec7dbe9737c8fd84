"""
Real-time collaboration API endpoints.

This module exposes the relay websocket and the HTTP routes through which the
surrounding application reads presence and pushes server-originated events.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, status

from ..auth.dependencies import get_current_principal
from ..error_types import ErrorMessages
from ..logging.enhanced_logging_config import get_logger
from ..realtime.connection_models import Principal
from ..realtime.event_relay import EventRelay
from ..realtime.websocket_handler import handle_websocket_connection
from ..schemas.realtime.presence_data import (
    CommentEventRequest,
    DeliveryResponse,
    NotificationRequest,
    PresenceEntryModel,
    PresenceSnapshotResponse,
    RelayStatistics,
)

logger = get_logger(__name__)

realtime_router = APIRouter(prefix="/api", tags=["realtime"])

CLOSE_TRY_AGAIN_LATER = 1013


def extract_websocket_token(websocket: WebSocket) -> tuple[str | None, str | None]:
    """
    Find the session token offered by a websocket client.

    Accepts the ``token`` query parameter, or the subprotocol header in the
    form ``bearer, <token>``. Browsers require the server to select one of the
    offered subprotocols, so ``bearer`` is returned for selection when used.

    Returns:
        (token, subprotocol to select on accept)
    """
    token = websocket.query_params.get("token")
    subprotocol = None
    header = websocket.headers.get("sec-websocket-protocol")
    if header:
        parts = [p.strip() for p in header.split(",") if p.strip()]
        if "bearer" in [p.lower() for p in parts]:
            subprotocol = next(p for p in parts if p.lower() == "bearer")
            candidates = [p for p in parts if p.lower() != "bearer"]
            if candidates:
                token = candidates[0]
    return token, subprotocol


def _require_relay(request: Request) -> EventRelay:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=ErrorMessages.SERVICE_UNAVAILABLE)
    return relay


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint of the event relay.

    The handshake is authenticated before the socket is accepted; an
    unverifiable token closes it with 1008 before any event is processed.
    """
    state = websocket.app.state
    relay = getattr(state, "relay", None)
    verifier = getattr(state, "identity_verifier", None)
    validator = getattr(state, "message_validator", None)
    if relay is None or verifier is None or validator is None:
        await websocket.accept()
        await websocket.send_json({"type": "error", "message": ErrorMessages.SERVICE_UNAVAILABLE})
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
        return

    token, subprotocol = extract_websocket_token(websocket)
    principal = verifier.verify(token)
    logger.debug("WebSocket connection attempt", user_id=principal.user_id if principal else None)
    await handle_websocket_connection(websocket, relay, principal, validator, subprotocol=subprotocol)


@realtime_router.get("/realtime/documents/{document_id}/presence", response_model=PresenceSnapshotResponse)
async def get_document_presence(
    document_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> PresenceSnapshotResponse:
    """Current members of a document room."""
    relay = _require_relay(request)
    members = [
        PresenceEntryModel(
            connection_id=entry.connection_id,
            user_id=entry.user_id,
            display_name=entry.display_name,
            cursor=entry.cursor,
        )
        for entry in relay.members_of(document_id)
    ]
    logger.debug("Presence snapshot requested", document_id=document_id, user_id=principal.user_id)
    return PresenceSnapshotResponse(document_id=document_id, member_count=len(members), members=members)


@realtime_router.post(
    "/realtime/notifications", response_model=DeliveryResponse, status_code=status.HTTP_202_ACCEPTED
)
async def send_notification(
    notification: NotificationRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> DeliveryResponse:
    """Route a notification to every live connection of one user."""
    relay = _require_relay(request)
    delivered = relay.notify_user(notification.target_user_id, notification.type, notification.message)
    logger.info(
        "Notification requested",
        sender_id=principal.user_id,
        target_user_id=notification.target_user_id,
        delivered=delivered,
    )
    return DeliveryResponse(delivered=delivered)


@realtime_router.post(
    "/realtime/documents/{document_id}/comments",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def publish_comment(
    document_id: str,
    comment: CommentEventRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> DeliveryResponse:
    """Push a newly stored comment to everyone viewing the document."""
    relay = _require_relay(request)
    delivered = relay.broadcast_comment(document_id, comment.comment_id, comment.content, principal.user_id)
    return DeliveryResponse(delivered=delivered)


@realtime_router.get("/realtime/stats", response_model=RelayStatistics)
async def get_relay_statistics(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> RelayStatistics:
    """Aggregate relay statistics."""
    relay = _require_relay(request)
    logger.debug("Relay statistics requested", user_id=principal.user_id)
    return RelayStatistics(**relay.get_stats())
