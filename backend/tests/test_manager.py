"""Tests for ConnectionManager delivery."""
import asyncio

import pytest

from app.chat.manager import ConnectionManager
from app.chat.presence import PresenceRegistry


async def _room(fake_connection, *connection_ids, room_id="r1"):
    presence = PresenceRegistry()
    manager = ConnectionManager(presence)
    connections = {}
    for cid in connection_ids:
        connections[cid] = fake_connection()
        await manager.register(cid, connections[cid])
        await presence.join(room_id, cid, f"user-{cid}")
    return manager, connections


class TestDelivery:

    @pytest.mark.asyncio
    async def test_broadcast_reaches_whole_room(self, fake_connection):
        manager, conns = await _room(fake_connection, "a", "b", "c")

        delivered = manager.broadcast({"type": "ping"}, "r1")
        await manager.flush()

        assert delivered == 3
        assert all(c.sent == [{"type": "ping"}] for c in conns.values())
        await manager.close()

    @pytest.mark.asyncio
    async def test_broadcast_except_skips_one_connection(self, fake_connection):
        manager, conns = await _room(fake_connection, "a", "b")

        manager.broadcast_except({"type": "ping"}, "r1", exclude_connection_id="a")
        await manager.flush()

        assert conns["a"].sent == []
        assert conns["b"].sent == [{"type": "ping"}]
        await manager.close()

    @pytest.mark.asyncio
    async def test_send_to_preserves_order(self, fake_connection):
        manager, conns = await _room(fake_connection, "a")

        for i in range(50):
            manager.send_to("a", {"type": "n", "i": i})
        await manager.flush()

        assert [f["i"] for f in conns["a"].sent] == list(range(50))
        await manager.close()

    @pytest.mark.asyncio
    async def test_send_to_unknown_connection(self, fake_connection):
        manager, _ = await _room(fake_connection, "a")
        assert manager.send_to("ghost", {"type": "x"}) is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_other_rooms_do_not_receive(self, fake_connection):
        presence = PresenceRegistry()
        manager = ConnectionManager(presence)
        a, b = fake_connection(), fake_connection()
        await manager.register("a", a)
        await manager.register("b", b)
        await presence.join("r1", "a", "alice")
        await presence.join("r2", "b", "bob")

        manager.broadcast({"type": "ping"}, "r1")
        await manager.flush()

        assert a.sent == [{"type": "ping"}]
        assert b.sent == []
        await manager.close()


class TestFailures:

    @pytest.mark.asyncio
    async def test_dead_connection_is_skipped_afterwards(self, fake_connection):
        presence = PresenceRegistry()
        manager = ConnectionManager(presence)
        dead, alive = fake_connection(fail=True), fake_connection()
        await manager.register("dead", dead)
        await manager.register("alive", alive)
        await presence.join("r1", "dead", "d")
        await presence.join("r1", "alive", "a")

        manager.broadcast({"type": "first"}, "r1")
        await manager.flush()
        delivered = manager.broadcast({"type": "second"}, "r1")
        await manager.flush()

        assert delivered == 1
        assert alive.types() == ["first", "second"]
        await manager.close()

    @pytest.mark.asyncio
    async def test_slow_receiver_does_not_block_broadcaster(self, fake_connection):
        release = asyncio.Event()

        class SlowConnection:
            def __init__(self):
                self.sent = []

            async def send_json(self, data):
                await release.wait()
                self.sent.append(data)

        presence = PresenceRegistry()
        manager = ConnectionManager(presence)
        slow, fast = SlowConnection(), fake_connection()
        await manager.register("slow", slow)
        await manager.register("fast", fast)
        await presence.join("r1", "slow", "s")
        await presence.join("r1", "fast", "f")

        manager.broadcast({"type": "ping"}, "r1")
        await asyncio.sleep(0.01)

        assert fast.sent == [{"type": "ping"}]
        assert slow.sent == []

        release.set()
        await manager.flush()
        assert slow.sent == [{"type": "ping"}]
        await manager.close()

    @pytest.mark.asyncio
    async def test_unregister_stops_delivery(self, fake_connection):
        manager, conns = await _room(fake_connection, "a")

        await manager.unregister("a")

        assert "a" not in manager
        assert manager.send_to("a", {"type": "x"}) is False
        await manager.close()
