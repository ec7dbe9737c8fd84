"""Realtime domain schemas: inbound WebSocket events and presence API models."""

from .presence_data import (
    CommentEventRequest,
    DeliveryResponse,
    NotificationRequest,
    PresenceEntryModel,
    PresenceSnapshotResponse,
    RelayStatistics,
)
from .websocket_messages import (
    INBOUND_MESSAGE_TYPES,
    CursorUpdateMessage,
    EditMessage,
    HeartbeatMessage,
    InboundMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    parse_inbound_message,
)

__all__ = [
    "INBOUND_MESSAGE_TYPES",
    "CommentEventRequest",
    "CursorUpdateMessage",
    "DeliveryResponse",
    "EditMessage",
    "HeartbeatMessage",
    "InboundMessage",
    "JoinRoomMessage",
    "LeaveRoomMessage",
    "NotificationRequest",
    "PresenceEntryModel",
    "PresenceSnapshotResponse",
    "RelayStatistics",
    "parse_inbound_message",
]
