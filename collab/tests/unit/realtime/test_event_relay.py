"""
Tests for the event relay.

The relay performs no I/O: every test drives its synchronous API and inspects
the events queued on each connection's outbox.
"""

import pytest

from collab.error_types import ErrorType
from collab.exceptions import AuthenticationFailure, CapacityFailure, ProtocolViolation
from collab.realtime.connection_models import Principal
from collab.realtime.event_relay import CLOSE_GOING_AWAY, CLOSE_NORMAL, CLOSE_POLICY_VIOLATION, EventRelay
from collab.realtime.rate_limiter import RateLimiter
from collab.schemas.realtime.websocket_messages import parse_inbound_message


def event_types(events):
    return [e["event_type"] for e in events]


class TestConnectionLifecycle:
    """Test opening, authenticating and closing connections."""

    def test_authenticate_queues_welcome(self, relay, drain):
        """Test that a successful handshake is answered with a welcome event."""
        connection = relay.open_connection("conn-a")

        relay.authenticate("conn-a", Principal("alice", "Alice"))

        events = drain("conn-a")
        assert event_types(events) == ["welcome"]
        assert events[0]["data"] == {
            "connectionId": "conn-a",
            "userId": "alice",
            "displayName": "Alice",
            "idleTimeoutSeconds": 30.0,
        }
        assert connection.state.state_id == "authenticated"

    def test_authenticate_without_principal_rejects(self, relay):
        """Test that an unresolved principal closes the connection with 1008."""
        connection = relay.open_connection("conn-a")

        with pytest.raises(AuthenticationFailure):
            relay.authenticate("conn-a", None)

        assert connection.is_closed
        assert connection.close_code == CLOSE_POLICY_VIOLATION
        assert relay.get_connection("conn-a") is None
        assert relay.get_stats()["close_reasons"] == {"authentication_failed": 1}

    def test_authenticate_twice_is_protocol_violation(self, relay, connect):
        """Test that a connection cannot re-authenticate."""
        connection_id = connect("alice")

        with pytest.raises(ProtocolViolation):
            relay.authenticate(connection_id, Principal("mallory"))

    def test_handshake_rate_limit_rejects(self, clock):
        """Test that a user over the handshake limit is rejected with a capacity failure."""
        relay = EventRelay(rate_limiter=RateLimiter(max_connection_attempts=1, clock=clock), clock=clock)
        relay.authenticate(relay.open_connection().connection_id, Principal("alice"))
        second = relay.open_connection()

        with pytest.raises(CapacityFailure) as exc_info:
            relay.authenticate(second.connection_id, Principal("alice"))

        assert exc_info.value.limit_type == "handshake_rate"
        assert second.is_closed
        assert second.close_code == CLOSE_POLICY_VIOLATION

    def test_open_connection_rejects_duplicate_id(self, relay):
        """Test that connection ids are unique."""
        relay.open_connection("conn-a")

        with pytest.raises(ValueError):
            relay.open_connection("conn-a")

    def test_close_connection_runs_cleanup_exactly_once(self, relay, connect, drain):
        """Test that cleanup leaves every room and is not repeated by a second close."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(a, "doc-2")
        relay.join(b, "doc-1")
        drain(a)
        drain(b)

        assert relay.close_connection(a) is True
        assert relay.close_connection(a) is False

        assert relay.rooms_of(a) == set()
        assert all(e.connection_id != a for e in relay.members_of("doc-1"))
        assert relay.members_of("doc-2") == []
        events = drain(b)
        assert event_types(events) == ["member-left"]
        assert events[0]["data"] == {"documentId": "doc-1", "userId": "alice", "connectionId": a}
        assert relay.get_stats()["close_reasons"] == {"transport_closed": 1}

    def test_close_connection_stops_writer(self, relay, connect):
        """Test that closing puts the stop sentinel on the outbox."""
        a = connect("alice")
        connection = relay.get_connection(a)

        relay.close_connection(a, reason="transport_closed", code=CLOSE_NORMAL)

        assert connection.outbox.get_nowait() is None
        assert connection.state.state_id == "closed"
        assert connection.close_code == CLOSE_NORMAL

    def test_close_all_uses_going_away(self, relay, connect):
        """Test that shutdown closes every connection with 1001."""
        ids = [connect("alice"), connect("bob")]
        connections = [relay.get_connection(cid) for cid in ids]

        assert relay.close_all() == 2

        assert all(c.close_code == CLOSE_GOING_AWAY for c in connections)
        assert relay.get_stats()["open_connections"] == 0


class TestRoomOperations:
    """Test join, leave, edit and cursor fan-out."""

    def test_join_notifies_other_members_only(self, relay, connect, drain):
        """Scenario: B joins after A; A hears about B, B hears nothing about itself."""
        a = connect("alice", "Alice")
        b = connect("bob", "Bob")
        relay.join(a, "doc-1")

        relay.join(b, "doc-1")

        a_events = drain(a)
        assert event_types(a_events) == ["member-joined"]
        assert a_events[0]["document_id"] == "doc-1"
        assert a_events[0]["data"] == {
            "documentId": "doc-1",
            "userId": "bob",
            "displayName": "Bob",
            "connectionId": b,
        }
        assert drain(b) == []

    def test_cursor_update_reaches_others_not_sender(self, relay, connect, drain):
        """Scenario: A's cursor at (10, 20) reaches B; A gets no echo."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)

        delivered = relay.cursor_update(a, "doc-1", {"x": 10, "y": 20})

        assert delivered == 1
        b_events = drain(b)
        assert event_types(b_events) == ["cursor-broadcast"]
        assert b_events[0]["data"]["userId"] == "alice"
        assert b_events[0]["data"]["position"] == {"x": 10, "y": 20}
        assert drain(a) == []
        assert relay.members_of("doc-1")[0].cursor == {"x": 10, "y": 20}

    def test_repeated_join_is_idempotent(self, relay, connect, drain):
        """Test that a second join neither duplicates the entry nor rebroadcasts."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)

        relay.join(b, "doc-1")

        assert len(relay.members_of("doc-1")) == 2
        assert drain(a) == []

    def test_first_join_activates_session(self, relay, connect):
        """Test that the connection becomes active on its first successful join."""
        a = connect("alice")

        relay.join(a, "doc-1")

        assert relay.get_connection(a).state.state_id == "active"

    def test_join_requires_authentication(self, relay):
        """Test that an unauthenticated connection cannot join."""
        connection = relay.open_connection()

        with pytest.raises(ProtocolViolation):
            relay.join(connection.connection_id, "doc-1")

        assert relay.members_of("doc-1") == []

    def test_join_over_room_limit_is_capacity_failure(self, clock):
        """Test the per-connection room limit."""
        relay = EventRelay(max_rooms_per_connection=1, clock=clock)
        connection = relay.open_connection()
        relay.authenticate(connection.connection_id, Principal("alice"))
        relay.join(connection.connection_id, "doc-1")

        with pytest.raises(CapacityFailure):
            relay.join(connection.connection_id, "doc-2")

        assert relay.rooms_of(connection.connection_id) == {"doc-1"}

    def test_leave_broadcasts_to_remaining_members(self, relay, connect, drain):
        """Test that leaving notifies the members that stay."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)

        assert relay.leave(b, "doc-1") is True

        assert event_types(drain(a)) == ["member-left"]
        assert drain(b) == []

    def test_leave_by_non_member_is_silent(self, relay, connect, drain):
        """Test that leaving a room the connection is not in is a logged no-op."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")

        assert relay.leave(b, "doc-1") is False
        assert drain(a) == []

    def test_edit_relays_content_verbatim(self, relay, connect, drain):
        """Test that edit content is forwarded unchanged to the other members."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)
        content = {"ops": [{"insert": "hello"}], "version": 7}

        assert relay.edit(a, "doc-1", content) == 1

        b_events = drain(b)
        assert event_types(b_events) == ["edit-broadcast"]
        assert b_events[0]["data"]["content"] == content
        assert b_events[0]["data"]["userId"] == "alice"
        assert drain(a) == []

    def test_edit_from_non_member_is_dropped(self, relay, connect, drain):
        """Test that a connection cannot push edits into a room it has not joined."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")

        assert relay.edit(b, "doc-1", "sneaky") == 0
        assert drain(a) == []

    def test_cursor_from_non_member_is_never_broadcast(self, relay, connect, drain):
        """Test that the registry rejects a non-member cursor and nothing is emitted."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")

        assert relay.cursor_update(b, "doc-1", {"x": 1}) == 0
        assert drain(a) == []

    @pytest.mark.parametrize("position", ["10,20", 42, None])
    def test_malformed_cursor_is_dropped(self, relay, connect, drain, position):
        """Test that a malformed position is dropped without a broadcast."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)

        assert relay.cursor_update(b, "doc-1", position) == 0
        assert drain(a) == []


class TestOrdering:
    """Test per-room event ordering."""

    def test_observer_sees_operations_in_application_order(self, relay, connect, drain):
        """Test join, edit, cursor and leave arrive in order with increasing sequence numbers."""
        observer = connect("olivia")
        actor = connect("alice")
        relay.join(observer, "doc-1")

        relay.join(actor, "doc-1")
        relay.edit(actor, "doc-1", "v1")
        relay.cursor_update(actor, "doc-1", [1, 2])
        relay.leave(actor, "doc-1")
        relay.cursor_update(actor, "doc-1", [3, 4])

        events = drain(observer)
        assert event_types(events) == ["member-joined", "edit-broadcast", "cursor-broadcast", "member-left"]
        sequence_numbers = [e["sequence_number"] for e in events]
        assert sequence_numbers == sorted(sequence_numbers)
        assert len(set(sequence_numbers)) == len(sequence_numbers)

    def test_no_cursor_after_disconnect_cleanup(self, relay, connect, drain):
        """Test that a cursor event after a transport close is not delivered."""
        observer = connect("olivia")
        actor = connect("alice")
        relay.join(observer, "doc-1")
        relay.join(actor, "doc-1")
        drain(observer)

        relay.close_connection(actor)
        relay.cursor_update(actor, "doc-1", {"x": 1})

        assert event_types(drain(observer)) == ["member-left"]


class TestIdleTimeout:
    """Test idle sweeping."""

    def test_silent_connection_is_swept(self, relay, connect, drain, clock):
        """Scenario: A joins and goes silent; B receives member-left within the idle window."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)
        connection_a = relay.get_connection(a)

        clock.advance(20)
        relay.touch(b)
        clock.advance(15)
        closed = relay.sweep_idle()

        assert closed == [a]
        assert connection_a.close_reason == "idle_timeout"
        assert connection_a.close_code == CLOSE_NORMAL
        assert event_types(drain(b)) == ["member-left"]

    def test_heartbeat_keeps_connection_alive(self, relay, connect, clock):
        """Test that activity resets the idle timer."""
        a = connect("alice")

        clock.advance(25)
        relay.heartbeat(a)
        clock.advance(25)

        assert relay.sweep_idle() == []
        assert relay.get_connection(a) is not None


class TestSameUserMultipleConnections:
    """Test presence keyed by connection."""

    def test_two_connections_of_one_user_are_distinct_entries(self, relay, connect, drain):
        """Scenario: the same user joins twice; the member count reflects connections."""
        observer = connect("olivia")
        first = connect("alice")
        second = connect("alice")
        relay.join(observer, "doc-1")
        relay.join(first, "doc-1")
        relay.join(second, "doc-1")

        assert len(relay.members_of("doc-1")) == 3
        assert event_types(drain(observer)) == ["member-joined", "member-joined"]

        relay.close_connection(first)

        members = relay.members_of("doc-1")
        assert [m.connection_id for m in members] == [observer, second]
        assert [c.connection_id for c in relay.connections_of_user("alice")] == [second]


class TestServerOriginatedEvents:
    """Test notifications and comment events."""

    def test_notify_user_reaches_every_connection_of_user(self, relay, connect, drain):
        """Test that notifications are routed by user, independent of rooms."""
        first = connect("alice")
        second = connect("alice")
        other = connect("bob")

        delivered = relay.notify_user("alice", "mention", "You were mentioned")

        assert delivered == 2
        for cid in (first, second):
            events = drain(cid)
            assert event_types(events) == ["notification"]
            assert events[0]["data"] == {"type": "mention", "message": "You were mentioned", "userId": "alice"}
        assert drain(other) == []

    def test_notify_unknown_user_delivers_nothing(self, relay):
        assert relay.notify_user("nobody", "info", "hello") == 0

    def test_broadcast_comment_reaches_all_members(self, relay, connect, drain):
        """Test that comment events go to every member, author included."""
        a = connect("alice")
        b = connect("bob")
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        drain(a)

        assert relay.broadcast_comment("doc-1", "c-1", "Looks good", "alice") == 2

        for cid in (a, b):
            events = drain(cid)
            assert event_types(events) == ["comment-created"]
            assert events[0]["data"]["commentId"] == "c-1"


class TestCapacity:
    """Test slow consumers and capacity escalation."""

    def test_slow_consumer_is_closed_without_affecting_others(self, clock):
        """Test that an overflowing outbox closes only its own connection."""
        relay = EventRelay(outbox_size=2, clock=clock)
        ids = []
        for user in ("alice", "bob", "carol"):
            connection = relay.open_connection()
            relay.authenticate(connection.connection_id, Principal(user))
            connection.outbox.get_nowait()
            ids.append(connection.connection_id)
        a, b, c = ids
        relay.join(a, "doc-1")
        relay.join(b, "doc-1")
        relay.join(c, "doc-1")
        slow = relay.get_connection(b)
        # a has seen b and c join; drain it so only b's outbox fills up
        while not relay.get_connection(a).outbox.empty():
            relay.get_connection(a).outbox.get_nowait()

        relay.edit(c, "doc-1", "one")
        relay.get_connection(a).outbox.get_nowait()
        relay.edit(c, "doc-1", "two")

        assert slow.is_closed
        assert slow.close_reason == "slow_consumer"
        assert slow.close_code == CLOSE_POLICY_VIOLATION
        assert relay.get_connection(a) is not None
        assert [m.connection_id for m in relay.members_of("doc-1")] == [a, c]

    def test_capacity_violations_escalate_to_close(self, clock):
        """Test that repeated violations force a 1008 close."""
        relay = EventRelay(max_capacity_violations=3, clock=clock)
        connection = relay.open_connection()
        relay.authenticate(connection.connection_id, Principal("alice"))

        assert relay.record_capacity_violation(connection.connection_id, "payload_size") is False
        assert relay.record_capacity_violation(connection.connection_id, "payload_size") is False
        assert relay.record_capacity_violation(connection.connection_id, "message_rate") is True

        assert connection.close_reason == "capacity_exceeded"
        assert connection.close_code == CLOSE_POLICY_VIOLATION


class TestHandleEvent:
    """Test dispatch of validated inbound messages."""

    def test_dispatches_each_message_type(self, relay, connect, drain):
        a = connect("alice")
        b = connect("bob")
        relay.join(b, "doc-1")

        for raw in (
            {"type": "join-room", "documentId": "doc-1"},
            {"type": "edit", "documentId": "doc-1", "content": "text"},
            {"type": "cursor-update", "documentId": "doc-1", "position": {"x": 1}},
            {"type": "heartbeat"},
            {"type": "leave-room", "documentId": "doc-1"},
        ):
            relay.handle_event(a, parse_inbound_message(raw))

        assert event_types(drain(b)) == ["member-joined", "edit-broadcast", "cursor-broadcast", "member-left"]

    def test_rejected_join_answers_originator_only(self, clock):
        """Test that a join failure becomes an error event for the joining connection."""
        relay = EventRelay(max_rooms_per_connection=1, clock=clock)
        connection = relay.open_connection()
        relay.authenticate(connection.connection_id, Principal("alice"))
        connection.outbox.get_nowait()
        relay.join(connection.connection_id, "doc-1")

        relay.handle_event(connection.connection_id, parse_inbound_message({"type": "join-room", "documentId": "d2"}))

        error = connection.outbox.get_nowait()
        assert error["event_type"] == "error"
        assert error["error_type"] == ErrorType.TOO_MANY_ROOMS.value
        assert error["details"] == {"documentId": "d2"}


def test_get_stats(relay, connect):
    """Test relay statistics."""
    a = connect("alice")
    connect("bob")
    relay.join(a, "doc-1")

    stats = relay.get_stats()

    assert stats["open_connections"] == 2
    assert stats["active_connections"] == 1
    assert stats["connected_users"] == 2
    assert stats["total_rooms"] == 1
    assert stats["total_memberships"] == 1
    assert stats["total_opened"] == 2
    assert "rate_limiter" in stats


def test_from_config_applies_relay_settings():
    """Test building a relay from relay configuration."""
    from collab.config.models import RelayConfig

    config = RelayConfig(idle_timeout_seconds=90, sweep_interval_seconds=10, outbox_size=8, max_messages_per_window=5)

    relay = EventRelay.from_config(config)

    assert relay.idle_timeout_seconds == 90
    assert relay.outbox_size == 8
    assert relay.rate_limiter.max_messages_per_window == 5
