"""
Presence, notification and statistics schemas for the real-time HTTP API.

This module defines Pydantic models used in API requests and responses,
ensuring type safety and automatic OpenAPI documentation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PresenceEntryModel(BaseModel):
    """One presence entry of a document room."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "connectionId": "3f0c6b1e-0b0a-4a38-9a8e-2b7d9e2c1f11",
                "userId": "user-42",
                "displayName": "Ada",
                "cursor": {"line": 10, "column": 20},
            }
        },
    )

    connection_id: str = Field(..., alias="connectionId", description="Connection holding this entry")
    user_id: str = Field(..., alias="userId", description="User identifier")
    display_name: str = Field(..., alias="displayName", description="Display name of the user")
    cursor: Any | None = Field(default=None, description="Last known cursor position, null until first update")


class PresenceSnapshotResponse(BaseModel):
    """Snapshot of a document room's membership."""

    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId", description="Document identifier")
    member_count: int = Field(..., alias="memberCount", description="Number of member connections")
    members: list[PresenceEntryModel] = Field(default_factory=list, description="Presence entries")


class NotificationRequest(BaseModel):
    """Notification routed to every live connection of one user."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    target_user_id: str = Field(..., alias="targetUserId", min_length=1, description="Recipient user id")
    type: str = Field(default="info", min_length=1, max_length=64, description="Notification category")
    message: str = Field(..., min_length=1, max_length=2000, description="Notification text")


class CommentEventRequest(BaseModel):
    """A newly created comment to push to everyone viewing a document."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    comment_id: str = Field(..., alias="commentId", min_length=1, description="Identifier of the stored comment")
    content: str = Field(..., min_length=1, max_length=10000, description="Comment text")


class DeliveryResponse(BaseModel):
    """Result of pushing a server-originated event."""

    model_config = ConfigDict(populate_by_name=True)

    delivered: int = Field(..., description="Number of connections the event was queued for")


class RelayStatistics(BaseModel):
    """Aggregate relay statistics."""

    model_config = ConfigDict(
        extra="allow",  # registry and rate limiter stats are merged in
        validate_assignment=True,
        validate_default=True,
    )

    open_connections: int = Field(default=0, description="Connections not yet closed")
    active_connections: int = Field(default=0, description="Connections in the active state")
    total_rooms: int = Field(default=0, description="Rooms with at least one member")
    total_memberships: int = Field(default=0, description="Presence entries across all rooms")
    total_opened: int = Field(default=0, description="Connections opened since startup")
    total_closed: int = Field(default=0, description="Connections closed since startup")
    close_reasons: dict[str, int] = Field(default_factory=dict, description="Closed connections per reason")
