"""
Session registry for document rooms.

The registry is the authoritative record of which connections are members of
which document rooms, and of the presence attributes (identity and cursor)
each membership carries. It performs no I/O and no locking of its own: the
event relay is its only writer and serializes every call.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any

from ..logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class PresenceEntry:
    """
    Presence state of one connection in one document room.

    Keyed by connection, not by user: two connections of the same user in the
    same room are two entries.
    """

    document_id: str
    connection_id: str
    user_id: str
    display_name: str
    cursor: Any | None = None
    joined_at: float = field(default_factory=time.time)
    cursor_updated_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire representation of the entry."""
        return {
            "connectionId": self.connection_id,
            "userId": self.user_id,
            "displayName": self.display_name,
            "cursor": self.cursor,
        }


class SessionRegistry:
    """
    Room membership and presence bookkeeping.

    Rooms exist implicitly: a room is created by its first join and removed
    with its last leave.
    """

    def __init__(self) -> None:
        # document_id -> connection_id -> entry
        self._rooms: dict[str, dict[str, PresenceEntry]] = {}
        # connection_id -> document ids
        self._connection_rooms: dict[str, set[str]] = {}

    def join(self, document_id: str, connection_id: str, user_id: str, display_name: str) -> PresenceEntry:
        """
        Add a connection to a room.

        Idempotent: joining a room the connection is already in returns the
        existing entry unchanged.

        Args:
            document_id: The room's document id
            connection_id: The joining connection
            user_id: User owning the connection
            display_name: Name shown to other members

        Returns:
            PresenceEntry: A copy of the (new or existing) entry
        """
        members = self._rooms.setdefault(document_id, {})
        existing = members.get(connection_id)
        if existing is not None:
            logger.debug("Connection already in room", connection_id=connection_id, document_id=document_id)
            return replace(existing)

        entry = PresenceEntry(
            document_id=document_id,
            connection_id=connection_id,
            user_id=user_id,
            display_name=display_name,
        )
        members[connection_id] = entry
        self._connection_rooms.setdefault(connection_id, set()).add(document_id)
        logger.debug(
            "Connection joined room",
            connection_id=connection_id,
            user_id=user_id,
            document_id=document_id,
            member_count=len(members),
        )
        return replace(entry)

    def leave(self, document_id: str, connection_id: str) -> PresenceEntry | None:
        """
        Remove a connection from a room.

        Not an error when the pair is absent, because disconnect cleanup can
        race an explicit leave.

        Returns:
            The removed entry, or None if the connection was not a member
        """
        members = self._rooms.get(document_id)
        if not members or connection_id not in members:
            logger.debug("Leave for non-member ignored", connection_id=connection_id, document_id=document_id)
            return None

        entry = members.pop(connection_id)
        if not members:
            del self._rooms[document_id]

        rooms = self._connection_rooms.get(connection_id)
        if rooms is not None:
            rooms.discard(document_id)
            if not rooms:
                del self._connection_rooms[connection_id]

        logger.debug(
            "Connection left room",
            connection_id=connection_id,
            user_id=entry.user_id,
            document_id=document_id,
            member_count=len(members),
        )
        return entry

    def update_cursor(self, document_id: str, connection_id: str, position: Any) -> PresenceEntry | None:
        """
        Record the latest cursor position of a member.

        A stale cursor event from a connection that already left must not
        resurrect its entry, so non-members are logged and ignored.

        Returns:
            A copy of the updated entry, or None if the connection is not a member
        """
        entry = self._rooms.get(document_id, {}).get(connection_id)
        if entry is None:
            logger.info(
                "Cursor update from non-member ignored",
                connection_id=connection_id,
                document_id=document_id,
            )
            return None

        entry.cursor = position
        entry.cursor_updated_at = time.time()
        return replace(entry)

    def members_of(self, document_id: str) -> list[PresenceEntry]:
        """Snapshot of a room's entries, in join order."""
        return [replace(entry) for entry in self._rooms.get(document_id, {}).values()]

    def member_connection_ids(self, document_id: str) -> list[str]:
        """Connection ids of a room's members, in join order."""
        return list(self._rooms.get(document_id, {}))

    def rooms_of(self, connection_id: str) -> set[str]:
        """Document ids the connection is currently a member of."""
        return set(self._connection_rooms.get(connection_id, set()))

    def is_member(self, document_id: str, connection_id: str) -> bool:
        return connection_id in self._rooms.get(document_id, {})

    def remove_connection(self, connection_id: str) -> list[PresenceEntry]:
        """
        Remove a connection from every room it belongs to.

        Returns:
            The removed entries, one per room, ordered by document id
        """
        removed: list[PresenceEntry] = []
        for document_id in sorted(self.rooms_of(connection_id)):
            entry = self.leave(document_id, connection_id)
            if entry is not None:
                removed.append(entry)
        if removed:
            logger.debug("Connection removed from all rooms", connection_id=connection_id, room_count=len(removed))
        return removed

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def get_stats(self) -> dict[str, Any]:
        """
        Get registry statistics.

        Returns:
            dict: Room and membership counts
        """
        return {
            "total_rooms": len(self._rooms),
            "total_memberships": sum(len(members) for members in self._rooms.values()),
            "connections_in_rooms": len(self._connection_rooms),
            "largest_room": max((len(members) for members in self._rooms.values()), default=0),
        }
