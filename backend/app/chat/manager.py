"""Connection manager delivering events to live WebSocket connections.

This module owns the send side of every connection. Room membership comes
from the ``PresenceRegistry``; the manager only maps connection ids to
sockets and pushes JSON frames to them.

Key features:
    - Per-connection outbox drained by its own task
    - Broadcast to a room, to a room except one connection, or to one connection
    - Automatic dead connection cleanup

Delivery Model:
    Broadcasting only enqueues. A slow or disconnected receiver never stalls
    the broadcaster or the rest of the room, and frames reach each
    connection in the order they were enqueued for it.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from .presence import PresenceRegistry

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can receive JSON frames (a Starlette WebSocket in production)."""

    async def send_json(self, data: Any) -> None:
        ...


class _Outbox:
    """FIFO of frames for one connection, pumped by a background task."""

    def __init__(self, connection_id: str, connection: Connection) -> None:
        self.connection_id = connection_id
        self.connection = connection
        self.alive = True
        self.queue: "asyncio.Queue[dict]" = asyncio.Queue()
        self.task = asyncio.create_task(self._pump())

    def put(self, message: dict) -> None:
        if self.alive:
            self.queue.put_nowait(message)

    async def _pump(self) -> None:
        while True:
            message = await self.queue.get()
            try:
                if self.alive:
                    await self.connection.send_json(message)
            except Exception as e:
                # Peer went away mid-send; stop delivering, the disconnect
                # handler unregisters the connection.
                self.alive = False
                logger.debug(f"Failed to send to connection {self.connection_id}: {e}")
            finally:
                self.queue.task_done()

    async def close(self) -> None:
        self.alive = False
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class ConnectionManager:
    """Routes outbound frames to connections by id or by room membership."""

    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence
        # connection_id -> outbox
        self._outboxes: Dict[str, _Outbox] = {}

    async def register(self, connection_id: str, connection: Connection) -> None:
        self._outboxes[connection_id] = _Outbox(connection_id, connection)
        logger.debug("[Manager] Registered connection %s", connection_id)

    async def unregister(self, connection_id: str) -> None:
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is not None:
            await outbox.close()
            logger.debug("[Manager] Unregistered connection %s", connection_id)

    def send_to(self, connection_id: str, message: dict) -> bool:
        """Queue *message* for one connection. Returns False if it is gone."""
        outbox = self._outboxes.get(connection_id)
        if outbox is None or not outbox.alive:
            return False
        outbox.put(message)
        return True

    def broadcast(self, message: dict, room_id: str) -> int:
        """Queue *message* for every connection in the room.

        Returns:
            Number of connections the message was queued for.
        """
        return self.broadcast_except(message, room_id, exclude_connection_id=None)

    def broadcast_except(
        self, message: dict, room_id: str, exclude_connection_id: Optional[str]
    ) -> int:
        """Queue *message* for every connection in the room except one.

        Used for typing indicators and new-message fan-out where the sender
        must not receive the frame.
        """
        delivered = 0
        for connection_id in self._presence.connections_of(room_id):
            if connection_id == exclude_connection_id:
                continue
            if self.send_to(connection_id, message):
                delivered += 1
        return delivered

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to its connection."""
        await asyncio.gather(
            *[outbox.queue.join() for outbox in list(self._outboxes.values())]
        )

    async def close(self) -> None:
        for connection_id in list(self._outboxes):
            await self.unregister(connection_id)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._outboxes
