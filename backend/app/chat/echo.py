"""Optimistic local echo and its reconciliation.

Sending is two-phase:

1. ``prepare`` validates the body and builds a ``temp-`` message that is
   shown to the sender right away, before the store is touched.
2. ``confirm`` persists the message and settles the echo exactly once:
   the sender gets ``message-confirmed`` pairing the temp id with the stored
   message (and the rest of the room gets ``new-message``), or the sender
   gets ``message-failed`` carrying the same temp id that was echoed.

Only the sending connection ever sees the temp message.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidArgument, StoreUnavailable
from .manager import ConnectionManager
from .schemas import ChatMessage, OutboundEvent, Receipt, UserIdentity, new_temp_id, validate_body
from .store import AsyncMessageStore

logger = logging.getLogger(__name__)


@dataclass
class PendingSend:
    """A sent message between its local echo and its reconciliation."""
    connection_id: str
    echo: ChatMessage
    settled: bool = False
    message: Optional[ChatMessage] = None

    @property
    def temp_id(self) -> str:
        return self.echo.id

    @property
    def confirmed(self) -> bool:
        return self.message is not None


class EchoReconciler:
    """Runs the echo -> persist -> confirm/fail sequence for one send."""

    def __init__(
        self,
        store: AsyncMessageStore,
        connections: ConnectionManager,
        max_body_length: int = 2000,
    ) -> None:
        self._store = store
        self._connections = connections
        self._max_body_length = max_body_length

    def prepare(
        self, room_id: str, connection_id: str, sender: UserIdentity, body: str
    ) -> PendingSend:
        """Validate a send and build its local echo.

        Raises:
            InvalidArgument: Empty room, or a blank, non-UTF-8 or oversized body.
        """
        if not room_id:
            raise InvalidArgument("roomId is required")
        validate_body(body, self._max_body_length)

        now = time.time()
        echo = ChatMessage(
            id=new_temp_id(),
            roomId=room_id,
            senderId=sender.userId,
            displayName=sender.displayName,
            accentColor=sender.accentColor,
            avatarUrl=sender.avatarUrl,
            body=body,
            createdAt=now,
            # The sender has seen their own message.
            seenBy=[Receipt(userId=sender.userId, displayName=sender.displayName, seenAt=now)],
            isTemp=True,
        )
        return PendingSend(connection_id=connection_id, echo=echo)

    async def send(
        self, room_id: str, connection_id: str, sender: UserIdentity, body: str
    ) -> PendingSend:
        """Echo to the sender immediately, then persist and reconcile."""
        pending = self.prepare(room_id, connection_id, sender, body)
        self._connections.send_to(connection_id, {
            "type": OutboundEvent.LOCAL_ECHO.value,
            "message": pending.echo.model_dump(),
        })
        await self.confirm(pending)
        return pending

    async def confirm(self, pending: PendingSend) -> Optional[ChatMessage]:
        """Persist the echoed message and settle it.

        Returns:
            The stored message, or None if persistence failed.
        """
        if pending.settled:
            return pending.message

        try:
            stored = await self._store.create(pending.echo)
        except Exception as exc:
            # Every failure settles the echo, not only StoreUnavailable.
            pending.settled = True
            failure = exc if isinstance(exc, StoreUnavailable) else StoreUnavailable(f"create failed: {exc}")
            logger.error(f"[Echo] Persisting {pending.temp_id} in room {pending.echo.roomId} failed: {exc}")
            self._connections.send_to(pending.connection_id, {
                "type": OutboundEvent.MESSAGE_FAILED.value,
                "tempId": pending.temp_id,
                "code": failure.code,
                "error": failure.message,
            })
            return None

        pending.settled = True
        pending.message = stored
        logger.info(f"[Echo] {pending.temp_id} confirmed as {stored.id} in room {stored.roomId}")

        payload = stored.model_dump()
        self._connections.send_to(pending.connection_id, {
            "type": OutboundEvent.MESSAGE_CONFIRMED.value,
            "tempId": pending.temp_id,
            "message": payload,
        })
        self._connections.broadcast_except(
            {"type": OutboundEvent.NEW_MESSAGE.value, "message": payload},
            stored.roomId,
            exclude_connection_id=pending.connection_id,
        )
        return stored
