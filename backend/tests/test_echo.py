"""Tests for EchoReconciler (optimistic send)."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.chat.echo import EchoReconciler
from app.chat.errors import InvalidArgument, StoreUnavailable
from app.chat.manager import ConnectionManager
from app.chat.presence import PresenceRegistry
from app.chat.schemas import UserIdentity, is_temp_id

ALICE = UserIdentity(userId="alice", displayName="Alice", accentColor="#ff0000")


async def _setup(fake_connection, store, max_body_length=2000):
    presence = PresenceRegistry()
    connections = ConnectionManager(presence)
    sender, other = fake_connection(), fake_connection()
    await connections.register("ca", sender)
    await connections.register("cb", other)
    await presence.join("r1", "ca", "alice")
    await presence.join("r1", "cb", "bob")
    echo = EchoReconciler(store, connections, max_body_length=max_body_length)
    return echo, connections, sender, other


class TestPrepare:

    def test_builds_temp_message_seen_by_sender(self):
        echo = EchoReconciler(MagicMock(), MagicMock())

        pending = echo.prepare("r1", "ca", ALICE, "hello")

        assert is_temp_id(pending.temp_id)
        assert pending.echo.isTemp is True
        assert pending.echo.senderId == "alice"
        assert pending.echo.accentColor == "#ff0000"
        assert [r.userId for r in pending.echo.seenBy] == ["alice"]
        assert pending.settled is False

    @pytest.mark.parametrize("body", ["", "   ", "\n\t", None, 42])
    def test_rejects_empty_or_non_text_body(self, body):
        echo = EchoReconciler(MagicMock(), MagicMock())
        with pytest.raises(InvalidArgument):
            echo.prepare("r1", "ca", ALICE, body)

    def test_rejects_oversized_body(self):
        echo = EchoReconciler(MagicMock(), MagicMock(), max_body_length=10)
        with pytest.raises(InvalidArgument):
            echo.prepare("r1", "ca", ALICE, "x" * 11)

    def test_rejects_missing_room(self):
        echo = EchoReconciler(MagicMock(), MagicMock())
        with pytest.raises(InvalidArgument):
            echo.prepare("", "ca", ALICE, "hello")


class TestSend:

    @pytest.mark.asyncio
    async def test_echo_then_confirm(self, fake_connection, async_store):
        echo, connections, sender, other = await _setup(fake_connection, async_store)

        pending = await echo.send("r1", "ca", ALICE, "hello")
        await connections.flush()

        assert sender.types() == ["local-echo", "message-confirmed"]
        local, confirmed = sender.sent
        assert local["message"]["id"] == pending.temp_id
        assert local["message"]["isTemp"] is True
        assert confirmed["tempId"] == pending.temp_id
        assert not is_temp_id(confirmed["message"]["id"])
        assert confirmed["message"]["isTemp"] is False
        assert pending.confirmed and pending.settled
        await connections.close()

    @pytest.mark.asyncio
    async def test_others_only_see_stored_message(self, fake_connection, async_store):
        echo, connections, sender, other = await _setup(fake_connection, async_store)

        pending = await echo.send("r1", "ca", ALICE, "hello")
        await connections.flush()

        assert other.types() == ["new-message"]
        message = other.sent[0]["message"]
        assert message["id"] == pending.message.id
        assert not is_temp_id(message["id"])
        assert [r["userId"] for r in message["seenBy"]] == ["alice"]
        await connections.close()

    @pytest.mark.asyncio
    async def test_store_failure_settles_as_failed(self, fake_connection):
        store = MagicMock()
        store.create = AsyncMock(side_effect=StoreUnavailable("database offline"))
        echo, connections, sender, other = await _setup(fake_connection, store)

        pending = await echo.send("r1", "ca", ALICE, "hello")
        await connections.flush()

        assert sender.types() == ["local-echo", "message-failed"]
        failed = sender.sent[1]
        assert failed["tempId"] == pending.temp_id
        assert failed["code"] == "store_unavailable"
        assert pending.settled is True
        assert pending.confirmed is False
        assert other.sent == []
        await connections.close()

    @pytest.mark.asyncio
    async def test_invalid_body_sends_nothing(self, fake_connection, async_store):
        echo, connections, sender, other = await _setup(fake_connection, async_store)

        with pytest.raises(InvalidArgument):
            await echo.send("r1", "ca", ALICE, "   ")
        await connections.flush()

        assert sender.sent == []
        assert await async_store.list_by_room("r1") == []
        await connections.close()

    @pytest.mark.asyncio
    async def test_confirm_settles_only_once(self, fake_connection, async_store):
        echo, connections, sender, _ = await _setup(fake_connection, async_store)

        pending = echo.prepare("r1", "ca", ALICE, "hello")
        first = await echo.confirm(pending)
        second = await echo.confirm(pending)
        await connections.flush()

        assert first is second
        assert sender.types() == ["message-confirmed"]
        assert len(await async_store.list_by_room("r1")) == 1
        await connections.close()

    @pytest.mark.asyncio
    async def test_non_utf8_body_is_rejected_before_echo(self, fake_connection, async_store):
        echo, connections, sender, other = await _setup(fake_connection, async_store)

        with pytest.raises(InvalidArgument):
            await echo.send("r1", "ca", ALICE, "hi \ud800")
        await connections.flush()

        assert sender.sent == []
        assert other.sent == []
        assert await async_store.list_by_room("r1") == []
        await connections.close()

    @pytest.mark.asyncio
    async def test_unexpected_store_error_settles_as_failed(self, fake_connection):
        store = MagicMock()
        store.create = AsyncMock(side_effect=RuntimeError("encoding error"))
        echo, connections, sender, other = await _setup(fake_connection, store)

        pending = await echo.send("r1", "ca", ALICE, "hello")
        await connections.flush()

        assert sender.types() == ["local-echo", "message-failed"]
        failed = sender.sent[1]
        assert failed["tempId"] == pending.temp_id
        assert failed["code"] == "store_unavailable"
        assert pending.settled is True
        assert pending.confirmed is False
        assert other.sent == []
        await connections.close()
