"""Tests for the idle connection monitor."""

import asyncio
from unittest.mock import Mock

import pytest

from collab.realtime.connection_models import Principal
from collab.realtime.event_relay import EventRelay
from collab.realtime.idle_monitor import IdleMonitor


class TestIdleMonitor:
    """Test the periodic sweep task."""

    def test_sweep_once_closes_idle_connections(self, relay, connect, clock):
        a = connect("alice")
        monitor = IdleMonitor(relay, sweep_interval_seconds=1.0)

        clock.advance(31)

        assert monitor.sweep_once() == [a]
        assert relay.get_connection(a) is None

    def test_sweep_once_survives_relay_errors(self):
        """Test that a failing sweep is logged and reported as nothing closed."""
        relay = Mock()
        relay.sweep_idle.side_effect = RuntimeError("boom")

        assert IdleMonitor(relay).sweep_once() == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test that the background task sweeps periodically and stops cleanly."""
        relay = EventRelay(idle_timeout_seconds=0.05)
        connection = relay.open_connection()
        relay.authenticate(connection.connection_id, Principal("alice"))
        monitor = IdleMonitor(relay, sweep_interval_seconds=0.02)

        monitor.start()
        monitor.start()
        assert monitor.is_running
        await asyncio.sleep(0.2)
        await monitor.stop()

        assert not monitor.is_running
        assert connection.is_closed
        assert connection.close_reason == "idle_timeout"

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, relay):
        await IdleMonitor(relay).stop()
