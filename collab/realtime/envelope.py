"""
Event envelope utilities for outbound real-time messages.

Every event the relay sends uses one schema:
- event_type: str
- timestamp: ISO 8601 UTC with 'Z'
- sequence_number: int (monotonic per relay)
- document_id: optional, present on room-scoped events
- data: dict payload
"""

from __future__ import annotations

import itertools
import threading
from datetime import UTC, datetime
from typing import Any

MEMBER_JOINED = "member-joined"
MEMBER_LEFT = "member-left"
EDIT_BROADCAST = "edit-broadcast"
CURSOR_BROADCAST = "cursor-broadcast"
NOTIFICATION = "notification"
COMMENT_CREATED = "comment-created"
WELCOME = "welcome"
ERROR = "error"


class SequenceCounter:
    """Thread-safe monotonic sequence number source."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


def utc_now_z() -> str:
    """Return current UTC time in ISO 8601 format with 'Z' suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_event(
    event_type: str,
    data: dict[str, Any] | None = None,
    *,
    document_id: str | None = None,
    sequence_number: int,
) -> dict[str, Any]:
    """
    Create a normalized event envelope.

    Args:
        event_type: Type of event
        data: Event data payload
        document_id: Room the event belongs to, if any
        sequence_number: Sequence number assigned by the relay
    """
    event: dict[str, Any] = {
        "event_type": event_type,
        "timestamp": utc_now_z(),
        "sequence_number": sequence_number,
        "data": data or {},
    }
    if document_id is not None:
        event["document_id"] = document_id
    return event
