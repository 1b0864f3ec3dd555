"""Room presence REST API router.

Endpoints:
    GET  /rooms/{room_id}/presence - Live member count and users of a room
"""
import logging
from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


class RoomPresenceResponse(BaseModel):
    """Response model for room presence."""
    roomId: str
    count: int = 0
    members: List[str] = Field(default_factory=list, description="User IDs with a live connection")


@router.get("/rooms/{room_id}/presence", response_model=RoomPresenceResponse)
async def get_room_presence(request: Request, room_id: str) -> RoomPresenceResponse:
    """Get the live connection count and present users of a room.

    Args:
        room_id: The room ID.

    Returns:
        RoomPresenceResponse with the current count and sorted member IDs
        (empty for unknown rooms).
    """
    engine = request.app.state.engine
    return RoomPresenceResponse(
        roomId=room_id,
        count=engine.member_count(room_id),
        members=sorted(engine.presence.members_of(room_id)),
    )
