"""
Client-side presence reconciliation.

Rebuilds, for one document, who is present and where their cursors are from
the relay's member and cursor events. The state is a disposable cache: it is
cleared whenever the client loses its connection, and the server never reads
it.
"""

import hashlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from ..logging.enhanced_logging_config import get_logger
from ..realtime.envelope import CURSOR_BROADCAST, MEMBER_JOINED, MEMBER_LEFT

if TYPE_CHECKING:
    from .lifecycle import ConnectionLifecycleManager

logger = get_logger(__name__)

COLORS: tuple[str, ...] = (
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#FFA07A",
    "#98D8C8",
    "#F7DC6F",
    "#BB8FCE",
    "#85C1E2",
    "#F8B739",
    "#52B788",
)

ColorStrategy = Literal["index", "hash"]
LeaveMode = Literal["connection", "user"]


@dataclass
class RosterEntry:
    user_id: str
    display_name: str
    color: str
    connection_ids: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class Collaborator:
    """Render snapshot of one present user."""

    user_id: str
    display_name: str
    color: str
    position: dict[str, Any] | list[Any] | None = None


class PresenceReconciler:
    """
    Roster and cursor overlay for one document.

    A user may be present through several connections; they stay in the
    roster until the last of those connections leaves.

    With ``leave_mode="user"`` any member-left for a user removes them at
    once, whatever other connections they still hold. That matches clients
    that track presence per user rather than per connection, but hides a user
    who closed one of several tabs until they join again.
    """

    def __init__(
        self,
        document_id: str,
        color_strategy: ColorStrategy = "index",
        palette: Sequence[str] = COLORS,
        leave_mode: LeaveMode = "connection",
    ) -> None:
        if color_strategy not in ("index", "hash"):
            raise ValueError(f"Unknown color strategy: {color_strategy}")
        if not palette:
            raise ValueError("Color palette must not be empty")
        if leave_mode not in ("connection", "user"):
            raise ValueError(f"Unknown leave mode: {leave_mode}")
        self.document_id = document_id
        self.color_strategy = color_strategy
        self.palette = tuple(palette)
        self.leave_mode = leave_mode
        self.roster: dict[str, RosterEntry] = {}
        self.cursors: dict[str, dict[str, Any] | list[Any]] = {}

    def apply(self, event: dict[str, Any]) -> bool:
        """
        Apply one relay event.

        Returns:
            True if the roster or the cursor overlay changed
        """
        data = event.get("data") or {}
        document_id = data.get("documentId", event.get("document_id"))
        if document_id is not None and document_id != self.document_id:
            return False

        match event.get("event_type"):
            case "member-joined":
                return self._on_join(data)
            case "member-left":
                return self._on_leave(data)
            case "cursor-broadcast":
                return self._on_cursor(data)
            case _:
                return False

    def _on_join(self, data: dict[str, Any]) -> bool:
        user_id = data.get("userId")
        if not user_id:
            return False
        connection_id = data.get("connectionId") or user_id
        entry = self.roster.get(user_id)
        if entry is None:
            entry = RosterEntry(
                user_id=user_id,
                display_name=data.get("displayName") or "Anonymous",
                color=self._allocate_color(user_id),
            )
            self.roster[user_id] = entry
            logger.debug("Collaborator joined", document_id=self.document_id, user_id=user_id, color=entry.color)
            entry.connection_ids.add(connection_id)
            return True
        entry.connection_ids.add(connection_id)
        return False

    def _on_leave(self, data: dict[str, Any]) -> bool:
        user_id = data.get("userId")
        entry = self.roster.get(user_id) if user_id else None
        if entry is None:
            return False
        entry.connection_ids.discard(data.get("connectionId") or user_id)
        if entry.connection_ids and self.leave_mode == "connection":
            return False
        del self.roster[user_id]
        self.cursors.pop(user_id, None)
        logger.debug("Collaborator left", document_id=self.document_id, user_id=user_id)
        return True

    def _on_cursor(self, data: dict[str, Any]) -> bool:
        user_id = data.get("userId")
        position = data.get("position")
        if user_id not in self.roster:
            logger.debug("Cursor for unknown collaborator dropped", document_id=self.document_id, user_id=user_id)
            return False
        if not isinstance(position, dict | list):
            return False
        self.cursors[user_id] = position
        return True

    def _allocate_color(self, user_id: str) -> str:
        if self.color_strategy == "hash":
            digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
            return self.palette[int(digest, 16) % len(self.palette)]
        # Index of the roster size at insertion; a rejoin may get another color
        return self.palette[len(self.roster) % len(self.palette)]

    def clear(self) -> None:
        """Forget every collaborator and cursor."""
        if self.roster or self.cursors:
            logger.debug("Presence cleared", document_id=self.document_id, collaborators=len(self.roster))
        self.roster.clear()
        self.cursors.clear()

    def collaborators(self) -> list[Collaborator]:
        """Present users in arrival order, each with their latest cursor."""
        return [
            Collaborator(
                user_id=entry.user_id,
                display_name=entry.display_name,
                color=entry.color,
                position=self.cursors.get(entry.user_id),
            )
            for entry in self.roster.values()
        ]

    def attach(self, manager: "ConnectionLifecycleManager") -> Callable[[], None]:
        """
        Feed this reconciler from a lifecycle manager.

        Presence is cleared when the manager loses or drops its connection.

        Returns:
            A callable that detaches every subscription
        """
        unsubscribers = [
            manager.on(MEMBER_JOINED, self.apply),
            manager.on(MEMBER_LEFT, self.apply),
            manager.on(CURSOR_BROADCAST, self.apply),
            manager.on("disconnect", lambda _event: self.clear()),
        ]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach
