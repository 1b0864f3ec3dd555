"""In-memory presence registry keyed by room.

Presence is a live-connection fact, never written to disk: the registry is
constructed at startup, dropped at shutdown, and rebuilt as clients
re-join after a restart.

A connection id belongs to at most one room at a time. ``join`` moves a
connection out of its previous room before registering it in the new one.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .errors import InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    room_id: str
    count: int
    # Room the connection was moved out of, with its new count.
    left: Optional[Tuple[str, int]] = None


class PresenceRegistry:
    """Room -> {connection_id -> user_id} registry guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, str]] = {}
        self._connection_room: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def join(
        self, room_id: str, connection_id: str, user_id: str, max_members: int = 0
    ) -> JoinResult:
        """Register *connection_id* in *room_id* as *user_id*.

        Re-joining the same room replaces the mapped user without double
        counting. With *max_members* > 0 the capacity check and the insert
        happen under the same lock.

        Raises:
            InvalidArgument: The room already holds *max_members* connections.
        """
        async with self._lock:
            previous = self._connection_room.get(connection_id)
            if (
                max_members > 0
                and previous != room_id
                and len(self._rooms.get(room_id, {})) >= max_members
            ):
                raise InvalidArgument(f"Room {room_id} is full")

            left = None
            if previous is not None and previous != room_id:
                left = (previous, self._remove_locked(connection_id))
                logger.info(
                    "[Presence] Connection %s moved from room %s to %s",
                    connection_id, previous, room_id,
                )

            self._rooms.setdefault(room_id, {})[connection_id] = user_id
            self._connection_room[connection_id] = room_id
            count = len(self._rooms[room_id])
        logger.info(f"[Presence] {user_id} joined room {room_id} ({count} connected)")
        return JoinResult(room_id=room_id, count=count, left=left)

    async def leave(self, connection_id: str) -> Optional[Tuple[str, int]]:
        """Drop *connection_id*; returns ``(room_id, count)`` or None if untracked."""
        async with self._lock:
            room_id = self._connection_room.get(connection_id)
            if room_id is None:
                return None
            count = self._remove_locked(connection_id)
        logger.info(f"[Presence] Connection {connection_id} left room {room_id} ({count} connected)")
        return (room_id, count)

    def members_of(self, room_id: str) -> Set[str]:
        """User ids with at least one live connection in the room."""
        return set(self._rooms.get(room_id, {}).values())

    def connections_of(self, room_id: str) -> List[str]:
        return list(self._rooms.get(room_id, {}))

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._connection_room.get(connection_id)

    def user_of(self, connection_id: str) -> Optional[str]:
        room_id = self._connection_room.get(connection_id)
        if room_id is None:
            return None
        return self._rooms[room_id].get(connection_id)

    def count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    def clear(self) -> None:
        """Forget every connection (shutdown)."""
        self._rooms.clear()
        self._connection_room.clear()

    def _remove_locked(self, connection_id: str) -> int:
        room_id = self._connection_room.pop(connection_id)
        members = self._rooms.get(room_id, {})
        members.pop(connection_id, None)
        if not members:
            self._rooms.pop(room_id, None)
        return len(members)
