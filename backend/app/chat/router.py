"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /chat/{room_id}/history: Bounded room history (oldest first)
    - WebSocket /ws/chat: Real-time chat messaging

The WebSocket protocol supports:
    - Room join with presence count broadcast and seen back-fill
    - Optimistic local echo with confirmation or failure
    - Read receipts
    - Edit / delete / moderator room clear
    - Typing indicators

Protocol Message Types (inbound):
    - join-room: {roomId, userId, displayName, avatarUrl, accentColor}
    - send-message: {roomId, body}
    - mark-seen: {messageId}
    - edit-message: {messageId, newBody}
    - delete-message: {messageId}
    - clear-room: {roomId}
    - typing-start / typing-stop: {roomId}
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.audit.schemas import AuditLogCreate, ModerationAction
from app.auth.privilege import OriginPrivilegeOracle

from .engine import ChatEngine
from .errors import ChatError, InvalidArgument
from .schemas import InboundEvent, UserIdentity

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_HISTORY_LIMIT = 100


@router.get("/chat/{room_id}/history")
async def get_message_history(
    request: Request,
    room_id: str,
    limit: int = Query(MAX_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT, description="Number of messages to return"),
) -> JSONResponse:
    """Get the most recent messages of a room, oldest first.

    Example:
        GET /chat/abc123/history?limit=50
    """
    engine: ChatEngine = request.app.state.engine
    try:
        messages = await engine.history(room_id, limit)
    except ChatError as exc:
        return JSONResponse(exc.to_dict("history"), status_code=exc.status_code)

    return JSONResponse({
        "roomId": room_id,
        "messages": [msg.model_dump() for msg in messages],
        "count": len(messages),
    })


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects → Server sends: {type: "connected", connectionId}
        2. Client sends: {type: "join-room", roomId, userId, displayName, ...}
           → Room receives: {type: "presence-count", roomId, count}
           → Client receives: {type: "history", roomId, messages}
           → Room receives: {type: "seen-update", ...} for back-filled receipts
        3. Client sends: {type: "send-message", body}
           → Client receives: {type: "local-echo", message}
           → Client receives: {type: "message-confirmed", tempId, message}
              or {type: "message-failed", tempId}
           → Others receive: {type: "new-message", message}
        4. On disconnect → Room receives: {type: "presence-count", ...}

    Errors are answered to the sending connection only with
    {type: "error", event, code, error}; the connection stays open.
    """
    engine: ChatEngine = websocket.app.state.engine
    oracle: OriginPrivilegeOracle = websocket.app.state.oracle

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    await engine.connect(connection_id, websocket)
    logger.info(f"[WS] Connection accepted. Assigned connectionId={connection_id}")

    try:
        while True:
            raw = await _receive_frame(websocket)
            event = ""
            try:
                data = _parse_frame(raw)
                event = data.get("type", "")
                logger.debug("[WS] %s received: type=%s", connection_id, event)
                await _handle_frame(websocket, engine, oracle, connection_id, data)
            except ChatError as exc:
                logger.info(f"[WS] {event or 'frame'} from {connection_id} rejected: {exc.code} ({exc.message})")
                engine.connections.send_to(connection_id, exc.to_dict(event))
            except Exception as e:
                # One bad frame must not end the session.
                logger.exception(f"[WS] Error handling {event or 'frame'} from {connection_id}: {e}")
                engine.connections.send_to(connection_id, ChatError("Internal error").to_dict(event))
    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection_id} disconnected")
    finally:
        await engine.disconnect(connection_id)


async def _receive_frame(websocket: WebSocket) -> Optional[str]:
    """Next text frame, or None for a binary frame."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    return message.get("text")


def _parse_frame(raw: Optional[str]) -> dict:
    if raw is None:
        raise InvalidArgument("Invalid message format: expected a text frame")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidArgument("Invalid message format: expected JSON") from None
    if not isinstance(data, dict):
        raise InvalidArgument("Invalid message format: expected an object")
    return data


async def _handle_frame(
    websocket: WebSocket,
    engine: ChatEngine,
    oracle: OriginPrivilegeOracle,
    connection_id: str,
    data: dict,
) -> None:
    message_type = data.get("type")

    # --- JOIN ---
    if message_type == InboundEvent.JOIN_ROOM.value:
        try:
            identity = UserIdentity(
                userId=data.get("userId") or "",
                displayName=data.get("displayName") or "",
                avatarUrl=data.get("avatarUrl") or "",
                **({"accentColor": data["accentColor"]} if data.get("accentColor") else {}),
            )
        except ValidationError:
            raise InvalidArgument("join-room requires a userId and valid UTF-8 identity fields") from None
        await engine.join(connection_id, _str(data.get("roomId")), identity)
        return

    # --- SEND ---
    if message_type == InboundEvent.SEND_MESSAGE.value:
        await engine.send_message(connection_id, data.get("body"), room_id=_str(data.get("roomId")) or None)
        return

    # --- READ RECEIPT ---
    # The connection's own identity is used; a client-supplied userId is ignored.
    if message_type == InboundEvent.MARK_SEEN.value:
        await engine.mark_seen(connection_id, _str(data.get("messageId")))
        return

    # --- EDIT ---
    if message_type == InboundEvent.EDIT_MESSAGE.value:
        await engine.edit_message(connection_id, _str(data.get("messageId")), data.get("newBody"))
        return

    # --- DELETE (sender or moderator) ---
    if message_type == InboundEvent.DELETE_MESSAGE.value:
        privileged = oracle.check(websocket)
        deleted = await engine.delete_message(connection_id, _str(data.get("messageId")), privileged)
        _record_audit(websocket, AuditLogCreate(
            room_id=deleted.roomId,
            action=ModerationAction.DELETE_MESSAGE,
            actor_id=engine.identity_of(connection_id).userId,
            target_id=deleted.id,
            deleted_count=1,
            privileged=privileged,
        ))
        return

    # --- CLEAR ROOM (moderator only) ---
    if message_type == InboundEvent.CLEAR_ROOM.value:
        privileged = oracle.check(websocket)
        room_id = _str(data.get("roomId")) or None
        deleted_count = await engine.clear_room(connection_id, privileged, room_id=room_id)
        _record_audit(websocket, AuditLogCreate(
            room_id=room_id or engine.presence.room_of(connection_id),
            action=ModerationAction.CLEAR_ROOM,
            actor_id=engine.identity_of(connection_id).userId,
            deleted_count=deleted_count,
            privileged=privileged,
        ))
        return

    # --- TYPING ---
    if message_type == InboundEvent.TYPING_START.value:
        engine.typing_start(connection_id)
        return
    if message_type == InboundEvent.TYPING_STOP.value:
        engine.typing_stop(connection_id)
        return

    raise InvalidArgument(f"Unknown message type: {message_type!r}")


def _record_audit(websocket: WebSocket, entry: AuditLogCreate) -> None:
    """Write a moderation audit entry; failures never undo the mutation."""
    try:
        websocket.app.state.audit.record(entry)
    except Exception as e:
        logger.error(f"[WS] Could not record audit entry for room {entry.room_id}: {e}")


def _str(value: Optional[object]) -> str:
    return value if isinstance(value, str) else ""
