"""
Data models for relay connections.

This module defines the data structures the event relay uses to track each
live connection and the principal it was authenticated as.
"""

# pylint: disable=too-many-instance-attributes  # Reason: connection bookkeeping needs these fields together

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from .connection_state_machine import RelayConnectionStateMachine

DEFAULT_DISPLAY_NAME = "Anonymous"


@dataclass(frozen=True)
class Principal:
    """Identity resolved by the authentication handshake."""

    user_id: str
    display_name: str = DEFAULT_DISPLAY_NAME


@dataclass
class RelayConnection:
    """
    One live transport-level channel to one authenticated user.

    The outbox holds envelopes waiting for the connection's writer task; a
    ``None`` item tells the writer to stop.
    """

    connection_id: str
    state: RelayConnectionStateMachine
    outbox: asyncio.Queue[dict[str, Any] | None]
    principal: Principal | None = None
    established_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.monotonic)
    capacity_violations: int = 0
    close_code: int | None = None
    close_reason: str | None = None

    @property
    def user_id(self) -> str | None:
        return self.principal.user_id if self.principal else None

    @property
    def display_name(self) -> str:
        return self.principal.display_name if self.principal else DEFAULT_DISPLAY_NAME

    @property
    def is_closed(self) -> bool:
        return self.state.is_closed
