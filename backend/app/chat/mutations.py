"""Edit, delete and bulk-clear of persisted messages.

Permission rules:
    - edit: only the original sender, privilege never helps
    - delete: the original sender, or any privileged (moderator) caller
    - clear room: privileged callers only

Privilege arrives as a boolean on every call and is never cached here.
Nothing is broadcast unless the store applied the change.
"""
import logging
import time
from typing import Optional

from .errors import InvalidArgument, NotFound, Unauthorized
from .manager import ConnectionManager
from .schemas import ChatMessage, OutboundEvent, validate_body
from .store import AsyncMessageStore

logger = logging.getLogger(__name__)


class MutationAuthority:
    """Authorizes and applies mutations, then notifies the room."""

    def __init__(
        self,
        store: AsyncMessageStore,
        connections: ConnectionManager,
        max_body_length: int = 2000,
    ) -> None:
        self._store = store
        self._connections = connections
        self._max_body_length = max_body_length

    async def edit(self, message_id: str, requester_id: str, new_body: str) -> ChatMessage:
        """Replace a message body.

        Raises:
            InvalidArgument: Missing id, or a blank, non-UTF-8 or oversized body.
            NotFound: No such message.
            Unauthorized: *requester_id* is not the sender.
            StoreUnavailable: The store failed; nothing was broadcast.
        """
        if not message_id:
            raise InvalidArgument("messageId is required")
        validate_body(new_body, self._max_body_length, field="newBody")

        def _apply(message: ChatMessage) -> ChatMessage:
            # Checked inside the update so ownership and write see the same row.
            if message.senderId != requester_id:
                raise Unauthorized("Only the sender can edit this message")
            message.body = new_body
            message.edited = True
            message.editedAt = time.time()
            return message

        try:
            updated = await self._store.update(message_id, _apply)
        except Unauthorized:
            logger.warning(f"[Mutations] Unauthorized edit of {message_id} by {requester_id}")
            raise
        if updated is None:
            raise NotFound(f"message {message_id} not found")

        logger.info(f"[Mutations] {requester_id} edited message {message_id}")
        self._connections.broadcast({
            "type": OutboundEvent.MESSAGE_EDITED.value,
            "messageId": updated.id,
            "newBody": updated.body,
            "editedAt": updated.editedAt,
        }, updated.roomId)
        return updated

    async def delete(
        self, message_id: str, requester_id: str, requester_is_privileged: bool
    ) -> ChatMessage:
        """Delete one message.

        Returns:
            The message as it was before deletion.

        Raises:
            InvalidArgument: Missing id.
            NotFound: No such message (including a repeated delete).
            Unauthorized: Neither the sender nor privileged.
            StoreUnavailable: The store failed; nothing was broadcast.
        """
        if not message_id:
            raise InvalidArgument("messageId is required")

        message = await self._store.get(message_id)
        if message is None:
            raise NotFound(f"message {message_id} not found")
        if message.senderId != requester_id and not requester_is_privileged:
            logger.warning(f"[Mutations] Unauthorized delete of {message_id} by {requester_id}")
            raise Unauthorized("Only the sender or a moderator can delete this message")

        if not await self._store.delete(message_id):
            # Lost a race with another delete or a room clear.
            raise NotFound(f"message {message_id} not found")

        logger.info(
            f"[Mutations] {requester_id} deleted message {message_id} "
            f"(privileged={requester_is_privileged})"
        )
        self._connections.broadcast({
            "type": OutboundEvent.MESSAGE_DELETED.value,
            "messageId": message_id,
        }, message.roomId)
        return message

    async def clear_room(
        self, room_id: str, requester_is_privileged: bool, requester_id: Optional[str] = None
    ) -> int:
        """Delete every message in a room.

        Returns:
            Number of messages deleted.

        Raises:
            InvalidArgument: Missing room id.
            Unauthorized: Caller is not privileged; nothing is deleted.
            StoreUnavailable: The store failed; nothing was broadcast.
        """
        if not room_id:
            raise InvalidArgument("roomId is required")
        if not requester_is_privileged:
            logger.warning(f"[Mutations] Unauthorized clear of room {room_id} by {requester_id}")
            raise Unauthorized("Only a moderator can clear the room")

        deleted_count = await self._store.delete_by_room(room_id)
        logger.info(f"[Mutations] Room {room_id} cleared by {requester_id}: {deleted_count} messages")
        self._connections.broadcast({
            "type": OutboundEvent.ROOM_CLEARED.value,
            "roomId": room_id,
            "deletedCount": deleted_count,
        }, room_id)
        return deleted_count
