"""Tests for the heartbeat and closure-timer monitor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from modchat.server.presence_monitor import PresenceMonitor

from conftest import connect


@pytest.fixture()
def monitor(registry, handler) -> PresenceMonitor:
    return PresenceMonitor(registry, handler, heartbeat_interval=30, closure_interval=1)


class TestHeartbeat:
    """heartbeat_tick."""

    @pytest.mark.asyncio
    async def test_live_connection_is_pinged_and_marked(self, monitor, handler):
        conn, sock = await connect(handler, "alice")

        await monitor.heartbeat_tick()

        assert sock.pings == 1
        assert conn.is_alive is False
        assert len(monitor.registry) == 1

    @pytest.mark.asyncio
    async def test_pong_keeps_connection(self, monitor, handler):
        conn, sock = await connect(handler, "alice")

        await monitor.heartbeat_tick()
        PresenceMonitor.mark_alive(conn)
        await monitor.heartbeat_tick()

        assert sock.pings == 2
        assert sock.closed is False

    @pytest.mark.asyncio
    async def test_silent_connection_is_reaped_like_a_disconnect(self, monitor, handler):
        alice, alice_sock = await connect(handler, "alice")
        bob, bob_sock = await connect(handler, "bob")

        await monitor.heartbeat_tick()
        PresenceMonitor.mark_alive(bob)
        await monitor.heartbeat_tick()

        assert alice_sock.closed is True
        assert alice.authenticated is False
        assert [u.username for u in handler.store.get_users()] == ["bob"]
        assert [u["username"] for u in bob_sock.last("users_update")["users"]] == ["bob"]
        assert list(monitor.registry) == [bob]

    @pytest.mark.asyncio
    async def test_ping_failure_is_tolerated(self, monitor, handler):
        conn, sock = await connect(handler, "alice")
        sock.ping = AsyncMock(side_effect=ConnectionResetError("gone"))

        await monitor.heartbeat_tick()

        assert conn.is_alive is False


class TestClosureTick:
    """closure_tick delegates to the handler."""

    @pytest.mark.asyncio
    async def test_closure_tick_enforces_timer(self, monitor, handler, clock):
        handler.store.update_config(timer_end_time=clock() - 1)

        await monitor.closure_tick()

        assert handler.store.get_config().enabled is False

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, registry, handler):
        handler.enforce_closure_timer = AsyncMock()
        monitor = PresenceMonitor(registry, handler, heartbeat_interval=10, closure_interval=0.01)

        monitor.start()
        await asyncio.sleep(0.035)
        await monitor.shutdown()

        assert handler.enforce_closure_timer.await_count >= 2
        assert monitor.heartbeat.running is False
        assert monitor.closure.running is False
