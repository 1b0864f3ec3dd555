"""Typing indicator relay.

Stateless: each start/stop is forwarded once to everyone else in the room.
Expiry and debouncing of the "is typing" state are left to clients.
"""
from .manager import ConnectionManager
from .schemas import OutboundEvent


class TypingRelay:

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    def start(self, room_id: str, connection_id: str, user_id: str, display_name: str) -> int:
        return self._connections.broadcast_except(
            {
                "type": OutboundEvent.USER_TYPING.value,
                "userId": user_id,
                "displayName": display_name,
            },
            room_id,
            exclude_connection_id=connection_id,
        )

    def stop(self, room_id: str, connection_id: str, user_id: str, display_name: str = "") -> int:
        return self._connections.broadcast_except(
            {
                "type": OutboundEvent.USER_STOPPED_TYPING.value,
                "userId": user_id,
                "displayName": display_name,
            },
            room_id,
            exclude_connection_id=connection_id,
        )
