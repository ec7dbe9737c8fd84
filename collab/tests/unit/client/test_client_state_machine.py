"""Tests for the client connection state machine."""

import pytest
from statemachine.exceptions import TransitionNotAllowed

from collab.client.connection_state_machine import ClientConnectionStateMachine


class TestClientConnectionStateMachine:
    """Test client lifecycle transitions."""

    def test_connect_and_lose_connection(self):
        machine = ClientConnectionStateMachine("client-1")
        assert machine.state_id == "idle"

        machine.start_connect()
        machine.handshake_succeeded()
        assert machine.is_connected
        machine.connection_lost(error=ConnectionError("reset"))

        assert machine.state_id == "backing_off"
        assert machine.total_connections == 1
        assert machine.total_disconnections == 1
        assert machine.get_stats()["last_error"] == "reset"

    def test_retry_counts_attempts_until_success(self):
        machine = ClientConnectionStateMachine("client-1")
        machine.start_connect()
        machine.handshake_failed(error=OSError("refused"))
        machine.retry()
        machine.handshake_failed(error=OSError("refused"))
        machine.retry()

        assert machine.reconnect_attempts == 2

        machine.handshake_succeeded()
        assert machine.reconnect_attempts == 0

    def test_give_up_and_reconnect_later(self):
        """Test that a client that gave up can be started again."""
        machine = ClientConnectionStateMachine("client-1")
        machine.start_connect()
        machine.handshake_failed()
        machine.give_up()
        assert machine.state_id == "disconnected"

        machine.start_connect()
        assert machine.state_id == "connecting"

    def test_shutdown_from_connected_counts_disconnection(self):
        machine = ClientConnectionStateMachine("client-1")
        machine.start_connect()
        machine.handshake_succeeded()

        machine.shutdown()

        assert machine.state_id == "disconnected"
        assert machine.total_disconnections == 1

    def test_invalid_transitions(self):
        machine = ClientConnectionStateMachine("client-1")

        with pytest.raises(TransitionNotAllowed):
            machine.handshake_succeeded()
        with pytest.raises(TransitionNotAllowed):
            machine.retry()
