"""MessageStore: DuckDB-backed durable storage for room messages.

Database Schema:
    messages table:
        - id: UUID string primary key, assigned on create, never reused
        - room_id: Room the message belongs to (indexed)
        - sender_id / display_name / accent_color / avatar_url: sender snapshot
        - body: Message text
        - created_at: Unix timestamp, non-decreasing in insertion order
        - edited / edited_at: Edit marker
        - seen_by: JSON array of receipts in first-seen order

Thread Safety:
    One DuckDB connection is shared by all callers and guarded by a lock.
    ``update`` runs its read-modify-write entirely under that lock, so two
    concurrent updates to the same message (two receipts, or a receipt
    racing an edit) cannot lose each other's changes.

Every ``duckdb.Error`` is surfaced as ``StoreUnavailable``.
"""
import asyncio
import functools
import json
import logging
import threading
import time
import uuid
from typing import Callable, List, Optional

import duckdb

from .errors import StoreUnavailable
from .schemas import ChatMessage, Receipt

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    seq          BIGINT DEFAULT nextval('messages_seq'),
    id           VARCHAR PRIMARY KEY,
    room_id      VARCHAR NOT NULL,
    sender_id    VARCHAR NOT NULL,
    display_name VARCHAR NOT NULL DEFAULT '',
    accent_color VARCHAR NOT NULL DEFAULT '',
    avatar_url   VARCHAR NOT NULL DEFAULT '',
    body         VARCHAR NOT NULL,
    created_at   DOUBLE NOT NULL,
    edited       BOOLEAN NOT NULL DEFAULT FALSE,
    edited_at    DOUBLE,
    seen_by      VARCHAR NOT NULL DEFAULT '[]'
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id)"

_COLUMNS = [
    "id", "room_id", "sender_id", "display_name", "accent_color",
    "avatar_url", "body", "created_at", "edited", "edited_at", "seen_by",
]

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM messages"

# Mutation applied inside ``update``; returning None leaves the row untouched.
Mutation = Callable[[ChatMessage], Optional[ChatMessage]]


class MessageStore:
    """Room-scoped message CRUD over an embedded DuckDB database."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._last_created_at = 0.0
        try:
            self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
            self._conn.execute(_CREATE_SEQUENCE)
            self._conn.execute(_CREATE_TABLE)
            self._conn.execute(_INDEX)
        except duckdb.Error as exc:
            raise StoreUnavailable(f"cannot open message store: {exc}") from exc
        logger.info("[MessageStore] Initialized with db=%s", db_path)

    # -----------------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------------

    def create(self, message: ChatMessage) -> ChatMessage:
        """Persist *message* under a fresh id and server timestamp."""
        with self._lock:
            conn = self._connection()
            message_id = str(uuid.uuid4())
            created_at = max(time.time(), self._last_created_at)
            stored = message.model_copy(update={
                "id": message_id,
                "createdAt": created_at,
                "edited": False,
                "editedAt": None,
                "isTemp": False,
            })
            try:
                conn.execute(
                    """
                    INSERT INTO messages
                      (id, room_id, sender_id, display_name, accent_color,
                       avatar_url, body, created_at, edited, edited_at, seen_by)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, FALSE, NULL, ?)
                    """,
                    [
                        stored.id, stored.roomId, stored.senderId,
                        stored.displayName, stored.accentColor, stored.avatarUrl,
                        stored.body, stored.createdAt,
                        _dump_receipts(stored.seenBy),
                    ],
                )
            except duckdb.Error as exc:
                raise StoreUnavailable(f"create failed: {exc}") from exc
            self._last_created_at = created_at
        return stored

    def list_by_room(self, room_id: str, limit: int = 100) -> List[ChatMessage]:
        """Return the newest *limit* messages of a room, oldest first."""
        with self._lock:
            try:
                rows = self._connection().execute(
                    f"""
                    SELECT {', '.join(_COLUMNS)} FROM (
                        SELECT {', '.join(_COLUMNS)}, seq FROM messages
                        WHERE room_id = ?
                        ORDER BY created_at DESC, seq DESC
                        LIMIT ?
                    ) ORDER BY created_at ASC, seq ASC
                    """,
                    [room_id, limit],
                ).fetchall()
            except duckdb.Error as exc:
                raise StoreUnavailable(f"list failed: {exc}") from exc
        return [_row_to_message(r) for r in rows]

    def get(self, message_id: str) -> Optional[ChatMessage]:
        with self._lock:
            return self._get_locked(message_id)

    def update(self, message_id: str, mutate: Mutation) -> Optional[ChatMessage]:
        """Atomically apply *mutate* to a message.

        Returns the stored message after the mutation, the unchanged message
        if *mutate* returned None, or None if the message does not exist.
        """
        with self._lock:
            current = self._get_locked(message_id)
            if current is None:
                return None
            updated = mutate(current.model_copy(deep=True))
            if updated is None:
                return current
            try:
                self._connection().execute(
                    """
                    UPDATE messages
                       SET body = ?, edited = ?, edited_at = ?, seen_by = ?
                     WHERE id = ?
                    """,
                    [
                        updated.body, updated.edited, updated.editedAt,
                        _dump_receipts(updated.seenBy), message_id,
                    ],
                )
            except duckdb.Error as exc:
                raise StoreUnavailable(f"update failed: {exc}") from exc
            return updated

    def delete(self, message_id: str) -> bool:
        with self._lock:
            try:
                result = self._connection().execute(
                    "DELETE FROM messages WHERE id = ? RETURNING id", [message_id]
                ).fetchone()
            except duckdb.Error as exc:
                raise StoreUnavailable(f"delete failed: {exc}") from exc
        return result is not None

    def delete_by_room(self, room_id: str) -> int:
        with self._lock:
            try:
                result = self._connection().execute(
                    "DELETE FROM messages WHERE room_id = ? RETURNING id", [room_id]
                ).fetchall()
            except duckdb.Error as exc:
                raise StoreUnavailable(f"clear failed: {exc}") from exc
        return len(result)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise StoreUnavailable("message store is closed")
        return self._conn

    def _get_locked(self, message_id: str) -> Optional[ChatMessage]:
        try:
            row = self._connection().execute(
                f"{_SELECT} WHERE id = ?", [message_id]
            ).fetchone()
        except duckdb.Error as exc:
            raise StoreUnavailable(f"lookup failed: {exc}") from exc
        return _row_to_message(row) if row else None


def _dump_receipts(receipts: List[Receipt]) -> str:
    return json.dumps([r.model_dump() for r in receipts])


def _row_to_message(row) -> ChatMessage:
    d = dict(zip(_COLUMNS, row))
    return ChatMessage(
        id=d["id"],
        roomId=d["room_id"],
        senderId=d["sender_id"],
        displayName=d["display_name"],
        accentColor=d["accent_color"],
        avatarUrl=d["avatar_url"],
        body=d["body"],
        createdAt=d["created_at"],
        edited=bool(d["edited"]),
        editedAt=d["edited_at"],
        seenBy=[Receipt(**r) for r in json.loads(d["seen_by"] or "[]")],
    )


class AsyncMessageStore:
    """Runs ``MessageStore`` calls in the default executor.

    DuckDB calls block; pushing them off the event loop keeps other
    connections responsive while one waits on the store.
    """

    def __init__(self, store: MessageStore) -> None:
        self.sync = store

    async def _run(self, fn, *args):
        return await asyncio.get_event_loop().run_in_executor(
            None, functools.partial(fn, *args)
        )

    async def create(self, message: ChatMessage) -> ChatMessage:
        return await self._run(self.sync.create, message)

    async def list_by_room(self, room_id: str, limit: int = 100) -> List[ChatMessage]:
        return await self._run(self.sync.list_by_room, room_id, limit)

    async def get(self, message_id: str) -> Optional[ChatMessage]:
        return await self._run(self.sync.get, message_id)

    async def update(self, message_id: str, mutate: Mutation) -> Optional[ChatMessage]:
        return await self._run(self.sync.update, message_id, mutate)

    async def delete(self, message_id: str) -> bool:
        return await self._run(self.sync.delete, message_id)

    async def delete_by_room(self, room_id: str) -> int:
        return await self._run(self.sync.delete_by_room, room_id)

    def close(self) -> None:
        self.sync.close()
