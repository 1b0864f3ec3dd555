"""Pydantic schemas for the moderation audit log.

Every applied delete or room clear is recorded so moderators' actions can
be reviewed after the fact.

These schemas are used by:
    - GET /audit/logs: Retrieve audit history
    - AuditLogService: DuckDB storage layer
    - The chat WebSocket handler, which records entries after mutations
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModerationAction(str, Enum):
    """Which mutation was applied.

    Attributes:
        DELETE_MESSAGE: A single message was deleted.
        CLEAR_ROOM: Every message in a room was deleted.
    """
    DELETE_MESSAGE = "delete_message"
    CLEAR_ROOM = "clear_room"


class AuditLogEntry(BaseModel):
    """A single audit log entry recording an applied mutation.

    Attributes:
        room_id: Room the mutation applied to.
        action: delete_message or clear_room.
        actor_id: User ID of the caller.
        target_id: Deleted message ID (None for a room clear).
        deleted_count: Number of messages removed.
        privileged: Whether the caller held moderator privilege.
        timestamp: When the mutation was applied (UTC).
    """
    room_id: str = Field(..., description="Room identifier")
    action: ModerationAction = Field(..., description="Applied mutation")
    actor_id: str = Field(..., description="User who applied it")
    target_id: Optional[str] = Field(None, description="Message reference")
    deleted_count: int = Field(default=1, ge=0, description="Messages removed")
    privileged: bool = Field(default=False, description="Caller was a moderator")
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When applied (UTC)"
    )


class AuditLogCreate(BaseModel):
    """Input schema for creating a new audit log entry.

    The timestamp is set by the service.
    """
    room_id: str = Field(..., min_length=1, description="Room identifier")
    action: ModerationAction = Field(..., description="Applied mutation")
    actor_id: str = Field(..., min_length=1, description="User who applied it")
    target_id: Optional[str] = Field(None, description="Message reference")
    deleted_count: int = Field(default=1, ge=0)
    privileged: bool = False
