"""
Test configuration and fixtures for the collaboration server test suite.

Environment variables are set before any collab module is imported so that
configuration loaded at import time sees test values.
"""

import os

os.environ.setdefault("COLLAB_JWT_SECRET", "test-jwt-secret-key-for-testing-only")
os.environ.setdefault("SERVER_PORT", "54731")
os.environ.setdefault("SERVER_HOST", "127.0.0.1")
os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("LOGGING_LEVEL", "WARNING")

from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from collab.auth_utils import create_access_token  # noqa: E402
from collab.realtime.connection_models import Principal  # noqa: E402
from collab.realtime.event_relay import EventRelay  # noqa: E402

TEST_JWT_SECRET = os.environ["COLLAB_JWT_SECRET"]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def drain_queue(queue) -> list[dict[str, Any]]:
    """Pop every queued outbound event, without the stop sentinel."""
    events = []
    while not queue.empty():
        event = queue.get_nowait()
        if event is not None:
            events.append(event)
    return events


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def relay(clock: FakeClock) -> EventRelay:
    """Relay with a controllable clock and a short idle timeout."""
    return EventRelay(idle_timeout_seconds=30.0, clock=clock)


@pytest.fixture
def connect(relay: EventRelay) -> Callable[..., str]:
    """Open and authenticate a connection, discarding its welcome event."""

    def _connect(user_id: str, display_name: str | None = None, connection_id: str | None = None) -> str:
        connection = relay.open_connection(connection_id)
        relay.authenticate(connection.connection_id, Principal(user_id, display_name or user_id.title()))
        drain_queue(connection.outbox)
        return connection.connection_id

    return _connect


@pytest.fixture
def drain(relay: EventRelay) -> Callable[[str], list[dict[str, Any]]]:
    """Pop every queued outbound event of an open connection."""

    def _drain(connection_id: str) -> list[dict[str, Any]]:
        connection = relay.get_connection(connection_id)
        assert connection is not None, f"connection {connection_id} is not open"
        return drain_queue(connection.outbox)

    return _drain


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Sign a session token with the test secret."""

    def _make_token(user_id: str, name: str | None = None) -> str:
        claims: dict[str, Any] = {"sub": user_id}
        if name is not None:
            claims["name"] = name
        return create_access_token(claims, TEST_JWT_SECRET)

    return _make_token
