"""Tests for ConnectionRegistry and Connection close signalling."""

from __future__ import annotations

import random

import pytest

from managed_http import Connection, ConnectionRegistry
from tests.utils.recording import RecordingLogger

pytestmark = pytest.mark.anyio


class FakeStream:
    """Just enough of a ByteStream for Connection."""

    def __init__(self, name: str = "peer"):
        self.name = name
        self.closed = False

    def extra(self, attribute, default=None):
        return default

    async def aclose(self):
        self.closed = True


class TestConnection:
    async def test_close_fires_callbacks_once(self):
        connection = Connection(FakeStream())
        fired: list[Connection] = []
        connection.on_close(fired.append)

        await connection.close()
        await connection.close()

        assert connection.closed
        assert connection.stream.closed
        assert fired == [connection]

    async def test_destroy_cancels_scope(self):
        connection = Connection(FakeStream())
        connection.destroy()
        assert connection.destroyed
        assert connection.cancel_scope.cancel_called

        await connection.close()
        assert connection.closed

    async def test_destroy_after_close_is_noop(self):
        connection = Connection(FakeStream())
        await connection.close()
        connection.destroy()
        assert not connection.destroyed


class TestConnectionRegistry:
    """Test ConnectionRegistry functionality."""

    async def test_track_and_close(self):
        registry = ConnectionRegistry()
        connection = Connection(FakeStream())

        registry.track(connection)
        assert connection in registry
        assert len(registry) == 1

        await connection.close()
        assert connection not in registry
        assert len(registry) == 0

    async def test_track_twice_rejected(self):
        registry = ConnectionRegistry()
        connection = Connection(FakeStream())
        registry.track(connection)
        with pytest.raises(ValueError, match="already tracked"):
            registry.track(connection)

    async def test_track_closed_rejected(self):
        registry = ConnectionRegistry()
        connection = Connection(FakeStream())
        await connection.close()
        with pytest.raises(ValueError, match="already closed"):
            registry.track(connection)

    async def test_remove_is_exactly_once(self):
        registry = ConnectionRegistry()
        connection = Connection(FakeStream())
        registry.track(connection)
        registry.remove(connection)
        with pytest.raises(KeyError):
            registry.remove(connection)

    async def test_destroy_all_leaves_removal_to_close(self):
        registry = ConnectionRegistry()
        connections = [Connection(FakeStream(f"c{i}")) for i in range(3)]
        for connection in connections:
            registry.track(connection)

        assert registry.destroy_all() == 3
        assert all(c.destroyed for c in connections)
        # Still present until each one signals close.
        assert len(registry) == 3

        for connection in connections:
            await connection.close()
        assert len(registry) == 0

    async def test_destroy_all_skips_failures(self):
        class ExplodingConnection(Connection):
            def destroy(self):
                raise RuntimeError("boom")

        logger = RecordingLogger()
        registry = ConnectionRegistry()
        good = Connection(FakeStream())
        registry.track(ExplodingConnection(FakeStream()))
        registry.track(good)

        assert registry.destroy_all(logger) == 1
        assert good.destroyed
        assert logger.messages("error") == ["http server: connection destroy errored"]

    async def test_iteration_is_a_snapshot(self):
        registry = ConnectionRegistry()
        connections = [Connection(FakeStream()) for _ in range(3)]
        for connection in connections:
            registry.track(connection)

        for connection in registry:
            await connection.close()
        assert len(registry) == 0

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    async def test_membership_matches_open_connections(self, seed):
        """Random accept/close/destroy sequences never leak or double-remove."""
        rng = random.Random(seed)
        registry = ConnectionRegistry()
        open_connections: set[Connection] = set()
        destroyed: set[Connection] = set()

        for _ in range(200):
            action = rng.choice(["accept", "accept", "close", "destroy"])
            if action == "accept":
                connection = Connection(FakeStream())
                registry.track(connection)
                open_connections.add(connection)
            elif action == "destroy" and open_connections:
                connection = rng.choice(sorted(open_connections, key=id))
                connection.destroy()
                destroyed.add(connection)
            elif action == "close" and open_connections:
                connection = rng.choice(sorted(open_connections, key=id))
                await connection.close()
                open_connections.discard(connection)
            assert set(registry.snapshot()) == open_connections

        for connection in list(open_connections):
            await connection.close()
        assert len(registry) == 0
