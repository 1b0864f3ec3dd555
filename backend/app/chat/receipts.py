"""Read receipt aggregation.

A message's ``seenBy`` list holds at most one receipt per user, in the
order users first saw it. Appending is done inside the store's atomic
update so concurrent markings never drop each other.
"""
import logging
import time
from dataclasses import dataclass
from typing import List

from .errors import InvalidArgument, NotFound
from .manager import ConnectionManager
from .schemas import ChatMessage, OutboundEvent, Receipt
from .store import AsyncMessageStore

logger = logging.getLogger(__name__)


@dataclass
class SeenResult:
    message: ChatMessage
    appended: bool


def seen_update(message: ChatMessage) -> dict:
    """Build the ``seen-update`` frame for *message*."""
    return {
        "type": OutboundEvent.SEEN_UPDATE.value,
        "messageId": message.id,
        "seenCount": len(message.seenBy),
        "seenBy": [r.model_dump() for r in message.seenBy],
    }


class ReceiptAggregator:
    """Maintains ``seenBy`` and fans out the resulting updates."""

    def __init__(self, store: AsyncMessageStore, connections: ConnectionManager) -> None:
        self._store = store
        self._connections = connections

    async def mark_seen(self, message_id: str, user_id: str, display_name: str) -> SeenResult:
        """Record that *user_id* saw *message_id*.

        A repeated marking by the same user is a no-op with ``appended=False``.

        Raises:
            InvalidArgument: Empty ids.
            NotFound: The message does not exist.
            StoreUnavailable: The store failed.
        """
        if not message_id or not user_id:
            raise InvalidArgument("messageId and userId are required")

        appended = False

        def _append(message: ChatMessage):
            nonlocal appended
            if message.has_seen(user_id):
                return None
            # seenAt never goes backwards relative to receipts already stored.
            last = message.seenBy[-1].seenAt if message.seenBy else 0.0
            message.seenBy.append(Receipt(
                userId=user_id,
                displayName=display_name,
                seenAt=max(time.time(), last),
            ))
            appended = True
            return message

        message = await self._store.update(message_id, _append)
        if message is None:
            raise NotFound(f"message {message_id} not found")
        if appended:
            logger.debug("[Receipts] %s saw message %s (%d seen)", user_id, message_id, len(message.seenBy))
        return SeenResult(message=message, appended=appended)

    async def mark_seen_and_broadcast(
        self, message_id: str, user_id: str, display_name: str
    ) -> SeenResult:
        """``mark_seen`` plus a room broadcast, only when a receipt was added."""
        result = await self.mark_seen(message_id, user_id, display_name)
        if result.appended:
            self._connections.broadcast(seen_update(result.message), result.message.roomId)
        return result

    async def mark_history_seen(
        self, history: List[ChatMessage], user_id: str, display_name: str
    ) -> List[ChatMessage]:
        """Store receipts for *user_id* on already-loaded *history*, without broadcasting.

        Raises:
            StoreUnavailable: The store failed; later messages are left unmarked.
        """
        updated = []
        for message in history:
            if message.has_seen(user_id):
                continue
            try:
                result = await self.mark_seen(message.id, user_id, display_name)
            except NotFound:
                # Deleted between the listing and the update.
                continue
            if result.appended:
                updated.append(result.message)
        if updated:
            logger.info(
                f"[Receipts] Back-filled {len(updated)} receipts for {user_id} "
                f"in room {updated[0].roomId}"
            )
        return updated

    def broadcast_updates(self, messages: List[ChatMessage]) -> None:
        for message in messages:
            self._connections.broadcast(seen_update(message), message.roomId)
