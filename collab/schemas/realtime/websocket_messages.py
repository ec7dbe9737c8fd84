"""
Pydantic schemas for inbound WebSocket messages.

These schemas define the structure and validation rules for every event a
client may send to the relay. Wire field names are camelCase; Python
attributes are snake_case.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class BaseWebSocketMessage(BaseModel):
    """Base class for all inbound WebSocket messages."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", str_strip_whitespace=True)

    type: str = Field(..., description="Message type identifier")
    timestamp: int | None = Field(None, description="Client-side message timestamp")


class DocumentMessage(BaseWebSocketMessage):
    """Message addressed to one document room."""

    document_id: str = Field(..., alias="documentId", min_length=1, description="Opaque document identifier")


class JoinRoomMessage(DocumentMessage):
    """Schema for joining a document room."""

    type: Literal["join-room"] = Field(default="join-room", description="Message type")


class LeaveRoomMessage(DocumentMessage):
    """Schema for leaving a document room."""

    type: Literal["leave-room"] = Field(default="leave-room", description="Message type")


class EditMessage(DocumentMessage):
    """Schema for a content snapshot. The content is relayed verbatim and never inspected."""

    type: Literal["edit"] = Field(default="edit", description="Message type")
    content: Any = Field(..., description="Opaque serialized document content")


class CursorUpdateMessage(DocumentMessage):
    """Schema for a cursor position update."""

    type: Literal["cursor-update"] = Field(default="cursor-update", description="Message type")
    position: dict[str, Any] | list[Any] = Field(..., description="Opaque structured cursor position")


class HeartbeatMessage(BaseWebSocketMessage):
    """Schema for keepalive messages."""

    type: Literal["heartbeat"] = Field(default="heartbeat", description="Message type")


InboundMessage = Annotated[
    JoinRoomMessage | LeaveRoomMessage | EditMessage | CursorUpdateMessage | HeartbeatMessage,
    Field(discriminator="type"),
]

INBOUND_MESSAGE_TYPES = frozenset({"join-room", "leave-room", "edit", "cursor-update", "heartbeat"})

inbound_message_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound_message(message: dict[str, Any]) -> InboundMessage:
    """Validate a decoded JSON object into its inbound message model."""
    return inbound_message_adapter.validate_python(message)
