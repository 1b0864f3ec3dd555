"""Tests for the in-memory PresenceRegistry."""
import asyncio

import pytest

from app.chat.errors import InvalidArgument
from app.chat.presence import PresenceRegistry


class TestJoin:

    @pytest.mark.asyncio
    async def test_join_returns_live_count(self):
        registry = PresenceRegistry()

        first = await registry.join("r1", "c1", "alice")
        second = await registry.join("r1", "c2", "bob")

        assert first.count == 1
        assert second.count == 2
        assert registry.members_of("r1") == {"alice", "bob"}

    @pytest.mark.asyncio
    async def test_rejoin_same_room_does_not_double_count(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")

        result = await registry.join("r1", "c1", "alice-renamed")

        assert result.count == 1
        assert result.left is None
        assert registry.user_of("c1") == "alice-renamed"

    @pytest.mark.asyncio
    async def test_switching_rooms_leaves_previous_room(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")
        await registry.join("r1", "c2", "bob")

        result = await registry.join("r2", "c1", "alice")

        assert result.left == ("r1", 1)
        assert registry.room_of("c1") == "r2"
        assert registry.connections_of("r1") == ["c2"]
        assert registry.count("r2") == 1

    @pytest.mark.asyncio
    async def test_same_user_on_two_connections_counts_twice(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")
        result = await registry.join("r1", "c2", "alice")

        assert result.count == 2
        assert registry.members_of("r1") == {"alice"}


class TestCapacity:

    @pytest.mark.asyncio
    async def test_full_room_rejects_new_connection(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice", max_members=1)

        with pytest.raises(InvalidArgument):
            await registry.join("r1", "c2", "bob", max_members=1)
        assert registry.count("r1") == 1
        assert registry.room_of("c2") is None

    @pytest.mark.asyncio
    async def test_rejoin_of_member_is_not_capped(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice", max_members=1)

        result = await registry.join("r1", "c1", "alice", max_members=1)

        assert result.count == 1

    @pytest.mark.asyncio
    async def test_rejected_switch_keeps_previous_room(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")
        await registry.join("r2", "c2", "bob", max_members=1)

        with pytest.raises(InvalidArgument):
            await registry.join("r2", "c1", "alice", max_members=1)
        assert registry.room_of("c1") == "r1"
        assert registry.count("r1") == 1

    @pytest.mark.asyncio
    async def test_concurrent_joins_respect_capacity(self):
        registry = PresenceRegistry()

        results = await asyncio.gather(
            *(registry.join("r1", f"c{i}", f"user{i}", max_members=3) for i in range(10)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, InvalidArgument)) == 7
        assert registry.count("r1") == 3


class TestLeave:

    @pytest.mark.asyncio
    async def test_leave_returns_room_and_count(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")
        await registry.join("r1", "c2", "bob")

        assert await registry.leave("c1") == ("r1", 1)
        assert registry.members_of("r1") == {"bob"}

    @pytest.mark.asyncio
    async def test_leave_untracked_connection(self):
        registry = PresenceRegistry()
        assert await registry.leave("ghost") is None

    @pytest.mark.asyncio
    async def test_leave_twice(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")

        assert await registry.leave("c1") == ("r1", 0)
        assert await registry.leave("c1") is None
        assert registry.count("r1") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("joins,leaves", [(1, 0), (5, 2), (8, 8), (10, 3)])
    async def test_count_is_joins_minus_leaves(self, joins, leaves):
        registry = PresenceRegistry()
        await asyncio.gather(*[
            registry.join("r1", f"c{i}", f"user-{i}") for i in range(joins)
        ])
        await asyncio.gather(*[registry.leave(f"c{i}") for i in range(leaves)])

        assert registry.count("r1") == joins - leaves


class TestQueries:

    def test_unknown_room_queries_are_empty(self):
        registry = PresenceRegistry()

        assert registry.members_of("nope") == set()
        assert registry.connections_of("nope") == []
        assert registry.count("nope") == 0
        assert registry.room_of("c1") is None
        assert registry.user_of("c1") is None

    @pytest.mark.asyncio
    async def test_clear_forgets_everything(self):
        registry = PresenceRegistry()
        await registry.join("r1", "c1", "alice")

        registry.clear()

        assert registry.count("r1") == 0
        assert registry.room_of("c1") is None
