"""Chat engine: one object wiring presence, delivery, receipts, echo,
mutations and typing together for the transport layer.

The engine is constructed once per process by the application lifespan and
handed to the WebSocket router through ``app.state``. Each method handles one
inbound event for one connection; failures are raised as ``ChatError`` and
reported by the caller to that connection only.
"""
import logging
from typing import Dict, List, Optional

from .echo import EchoReconciler, PendingSend
from .errors import InvalidArgument
from .manager import Connection, ConnectionManager
from .mutations import MutationAuthority
from .presence import PresenceRegistry
from .receipts import ReceiptAggregator, SeenResult
from .schemas import ChatMessage, OutboundEvent, UserIdentity, is_encodable
from .store import AsyncMessageStore
from .typing_relay import TypingRelay

logger = logging.getLogger(__name__)


class ChatEngine:
    """Facade over the chat components, keyed by connection id."""

    def __init__(
        self,
        store: AsyncMessageStore,
        presence: Optional[PresenceRegistry] = None,
        history_limit: int = 100,
        max_participants: int = 0,
        max_body_length: int = 2000,
        max_room_id_length: int = 64,
    ) -> None:
        self.store = store
        self.presence = presence or PresenceRegistry()
        self.connections = ConnectionManager(self.presence)
        self.receipts = ReceiptAggregator(store, self.connections)
        self.echo = EchoReconciler(store, self.connections, max_body_length)
        self.mutations = MutationAuthority(store, self.connections, max_body_length)
        self.typing = TypingRelay(self.connections)

        self.history_limit = history_limit
        self.max_participants = max_participants
        self.max_room_id_length = max_room_id_length

        # connection_id -> identity given on join
        self._identities: Dict[str, UserIdentity] = {}

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, connection_id: str, connection: Connection) -> None:
        await self.connections.register(connection_id, connection)
        self.connections.send_to(connection_id, {
            "type": OutboundEvent.CONNECTED.value,
            "connectionId": connection_id,
        })

    async def join(self, connection_id: str, room_id: str, identity: UserIdentity) -> int:
        """Join a room, announce the new count, send history, back-fill receipts.

        All store work (history read and receipt back-fill) happens before the
        connection is registered, so a store failure leaves it outside the
        room with nothing broadcast.

        Returns:
            The room's live member count after the join.
        """
        self._validate_room_id(room_id)
        if self._is_full(connection_id, room_id):
            raise InvalidArgument(f"Room {room_id} is full")

        history = await self.store.list_by_room(room_id, self.history_limit)
        backfilled = await self.receipts.mark_history_seen(
            history, identity.userId, identity.displayName
        )

        # Capacity is re-checked atomically; the first check only avoids store work.
        try:
            result = await self.presence.join(
                room_id, connection_id, identity.userId, max_members=self.max_participants
            )
        except InvalidArgument:
            logger.warning(
                f"[Engine] Room {room_id} is full ({self.max_participants} participants). "
                "Rejecting join."
            )
            raise
        self._identities[connection_id] = identity

        if result.left is not None:
            self._broadcast_count(*result.left)
        self._broadcast_count(room_id, result.count)

        updated = {m.id: m for m in backfilled}
        self.connections.send_to(connection_id, {
            "type": OutboundEvent.HISTORY.value,
            "roomId": room_id,
            "messages": [updated.get(m.id, m).model_dump() for m in history],
        })

        self.receipts.broadcast_updates(backfilled)
        return result.count

    async def disconnect(self, connection_id: str) -> None:
        left = await self.presence.leave(connection_id)
        self._identities.pop(connection_id, None)
        await self.connections.unregister(connection_id)
        if left is not None:
            self._broadcast_count(*left)

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self, connection_id: str, body: str, room_id: Optional[str] = None
    ) -> PendingSend:
        joined_room, identity = self._session(connection_id)
        if room_id and room_id != joined_room:
            raise InvalidArgument(f"Not joined to room {room_id}")
        return await self.echo.send(joined_room, connection_id, identity, body)

    async def mark_seen(self, connection_id: str, message_id: str) -> SeenResult:
        _, identity = self._session(connection_id)
        return await self.receipts.mark_seen_and_broadcast(
            message_id, identity.userId, identity.displayName
        )

    async def edit_message(self, connection_id: str, message_id: str, new_body: str) -> ChatMessage:
        _, identity = self._session(connection_id)
        return await self.mutations.edit(message_id, identity.userId, new_body)

    async def delete_message(
        self, connection_id: str, message_id: str, privileged: bool
    ) -> ChatMessage:
        _, identity = self._session(connection_id)
        return await self.mutations.delete(message_id, identity.userId, privileged)

    async def clear_room(
        self, connection_id: str, privileged: bool, room_id: Optional[str] = None
    ) -> int:
        joined_room, identity = self._session(connection_id)
        target = room_id or joined_room
        self._validate_room_id(target)
        return await self.mutations.clear_room(target, privileged, identity.userId)

    async def history(self, room_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        self._validate_room_id(room_id)
        return await self.store.list_by_room(room_id, min(limit or self.history_limit, self.history_limit))

    # =========================================================================
    # Typing
    # =========================================================================

    def typing_start(self, connection_id: str) -> int:
        room_id, identity = self._session(connection_id)
        return self.typing.start(room_id, connection_id, identity.userId, identity.displayName)

    def typing_stop(self, connection_id: str) -> int:
        room_id, identity = self._session(connection_id)
        return self.typing.stop(room_id, connection_id, identity.userId, identity.displayName)

    # =========================================================================
    # Queries / shutdown
    # =========================================================================

    def identity_of(self, connection_id: str) -> Optional[UserIdentity]:
        return self._identities.get(connection_id)

    def member_count(self, room_id: str) -> int:
        return self.presence.count(room_id)

    async def close(self) -> None:
        await self.connections.close()
        self.presence.clear()
        self._identities.clear()
        self.store.close()
        logger.info("[Engine] Closed")

    # =========================================================================
    # Internal
    # =========================================================================

    def _session(self, connection_id: str):
        room_id = self.presence.room_of(connection_id)
        identity = self._identities.get(connection_id)
        if room_id is None or identity is None:
            raise InvalidArgument("Join a room first")
        return room_id, identity

    def _is_full(self, connection_id: str, room_id: str) -> bool:
        full = (
            self.max_participants > 0
            and self.presence.room_of(connection_id) != room_id
            and self.presence.count(room_id) >= self.max_participants
        )
        if full:
            logger.warning(
                f"[Engine] Room {room_id} is full ({self.max_participants} participants). "
                "Rejecting join."
            )
        return full

    def _validate_room_id(self, room_id: str) -> None:
        if not isinstance(room_id, str) or not room_id.strip():
            raise InvalidArgument("roomId is required")
        if not is_encodable(room_id):
            raise InvalidArgument("roomId is not valid UTF-8 text")
        if len(room_id) > self.max_room_id_length:
            raise InvalidArgument(f"roomId exceeds {self.max_room_id_length} characters")

    def _broadcast_count(self, room_id: str, count: int) -> None:
        self.connections.broadcast({
            "type": OutboundEvent.PRESENCE_COUNT.value,
            "roomId": room_id,
            "count": count,
        }, room_id)
