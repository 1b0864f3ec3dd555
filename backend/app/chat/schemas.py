"""Pydantic schemas for the chat relay.

This module defines the message record shared by the store, the engine and
the wire protocol, plus the event names used on the WebSocket.

Field names are camelCase because messages are broadcast to browser clients
verbatim via ``model_dump()``.
"""
import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .errors import InvalidArgument

# Prefix marking a locally generated (not yet persisted) message id.
# Store ids are plain UUID4 strings and can never start with it.
TEMP_ID_PREFIX = "temp-"

DEFAULT_ACCENT_COLOR = "#4285F4"


def new_temp_id() -> str:
    """Mint an identifier for a local echo."""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


def is_encodable(value: str) -> bool:
    """False for text the store cannot persist (lone surrogates)."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def validate_body(body: object, max_length: int, field: str = "body") -> str:
    """Check a message body before any side effect.

    Raises:
        InvalidArgument: Not text, blank, not valid UTF-8, or longer than *max_length*.
    """
    if not isinstance(body, str) or not body.strip():
        raise InvalidArgument(f"Invalid message format: {field} is required")
    if not is_encodable(body):
        raise InvalidArgument(f"Invalid message format: {field} is not valid UTF-8 text")
    if len(body) > max_length:
        raise InvalidArgument(f"Message body exceeds {max_length} characters")
    return body


class InboundEvent(str, Enum):
    """Frame types a client may send."""
    JOIN_ROOM = "join-room"
    SEND_MESSAGE = "send-message"
    MARK_SEEN = "mark-seen"
    EDIT_MESSAGE = "edit-message"
    DELETE_MESSAGE = "delete-message"
    CLEAR_ROOM = "clear-room"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"


class OutboundEvent(str, Enum):
    """Frame types the server emits."""
    CONNECTED = "connected"
    HISTORY = "history"
    ERROR = "error"
    LOCAL_ECHO = "local-echo"
    MESSAGE_CONFIRMED = "message-confirmed"
    MESSAGE_FAILED = "message-failed"
    NEW_MESSAGE = "new-message"
    SEEN_UPDATE = "seen-update"
    MESSAGE_EDITED = "message-edited"
    MESSAGE_DELETED = "message-deleted"
    ROOM_CLEARED = "room-cleared"
    PRESENCE_COUNT = "presence-count"
    USER_TYPING = "user-typing"
    USER_STOPPED_TYPING = "user-stopped-typing"


class UserIdentity(BaseModel):
    """Identity handed over by the identity provider for one connection.

    Attributes:
        userId: Stable user identifier.
        displayName: Name shown in the chat UI.
        avatarUrl: Profile photo URL (may be empty).
        accentColor: CSS color used for the user's name.
    """
    userId: str = Field(..., min_length=1, description="Stable user ID")
    displayName: str = Field(default="", description="Display name shown in UI")
    avatarUrl: str = Field(default="", description="Profile photo URL")
    accentColor: str = Field(default=DEFAULT_ACCENT_COLOR, description="Name color")

    @field_validator("userId", "displayName", "avatarUrl", "accentColor")
    @classmethod
    def _storable(cls, value: str) -> str:
        if not is_encodable(value):
            raise ValueError("must be valid UTF-8 text")
        return value


class Receipt(BaseModel):
    """A single "seen by" entry on a message."""
    userId: str
    displayName: str = ""
    seenAt: float = Field(default_factory=time.time)


class ChatMessage(BaseModel):
    """Chat message as persisted and broadcast.

    The sender fields are a snapshot taken at send time, so later profile
    changes do not rewrite history.

    Attributes:
        id: Store-assigned id, or a ``temp-`` id for a local echo.
        roomId: Room this message belongs to.
        senderId: Sender's user ID.
        displayName: Sender's display name at send time.
        accentColor: Sender's accent color at send time.
        avatarUrl: Sender's avatar URL at send time.
        body: Message text.
        createdAt: Unix timestamp (seconds since epoch).
        edited: Whether the body was changed after sending.
        editedAt: Unix timestamp of the last edit.
        seenBy: Receipts in first-seen order, at most one per user.
        isTemp: True only for the sender-only local echo.
    """
    id: str = Field(..., description="Message ID")
    roomId: str = Field(..., description="Room ID this message belongs to")
    senderId: str = Field(..., description="User ID of the sender")
    displayName: str = Field(default="", description="Sender display name snapshot")
    accentColor: str = Field(default=DEFAULT_ACCENT_COLOR)
    avatarUrl: str = Field(default="")
    body: str = Field(..., description="Message text")
    createdAt: float = Field(default_factory=time.time)
    edited: bool = False
    editedAt: Optional[float] = None
    seenBy: List[Receipt] = Field(default_factory=list)
    isTemp: bool = False

    def has_seen(self, user_id: str) -> bool:
        return any(r.userId == user_id for r in self.seenBy)
