"""DuckDB-based moderation audit log storage service.

Database Schema:
    moderation_audit table:
        - id: Auto-incrementing primary key
        - room_id: Room the mutation applied to
        - action: 'delete_message' or 'clear_room'
        - actor_id: User ID of the caller
        - target_id: Deleted message ID (NULL for room clears)
        - deleted_count: Messages removed
        - privileged: Whether the caller held moderator privilege
        - timestamp: When the mutation was applied (UTC)

Thread Safety:
    The DuckDB connection is NOT thread-safe. The service is only called
    from the event loop thread.

Usage:
    service = AuditLogService(db_path=":memory:")
    entry = service.record(create_entry)
    logs = service.get_logs(room_id="abc-123")
"""
from datetime import datetime, timezone
from typing import List, Optional

import duckdb

from .schemas import AuditLogCreate, AuditLogEntry, ModerationAction


class AuditLogService:
    """Service for recording moderation actions in DuckDB.

    The application lifespan creates one instance and closes it on shutdown.

    Attributes:
        _db_path: Path to the DuckDB database file.
    """

    _db_path: str = "moderation_audit.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the audit log service.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file. Defaults to "moderation_audit.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get the DuckDB connection, creating if needed."""
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Initialize the database schema (idempotent)."""
        conn = self._get_connection()
        conn.execute("""
            CREATE SEQUENCE IF NOT EXISTS moderation_audit_seq START 1;
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS moderation_audit (
                id INTEGER DEFAULT nextval('moderation_audit_seq') PRIMARY KEY,
                room_id VARCHAR NOT NULL,
                action VARCHAR NOT NULL,
                actor_id VARCHAR NOT NULL,
                target_id VARCHAR,
                deleted_count INTEGER NOT NULL,
                privileged BOOLEAN NOT NULL,
                timestamp TIMESTAMP NOT NULL
            )
        """)

    def record(self, entry: AuditLogCreate) -> AuditLogEntry:
        """Record an applied mutation.

        Args:
            entry: The audit log entry to create.

        Returns:
            The created audit log entry with timestamp.
        """
        timestamp = datetime.now(timezone.utc)
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO moderation_audit
                (room_id, action, actor_id, target_id, deleted_count, privileged, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                entry.room_id,
                entry.action.value,
                entry.actor_id,
                entry.target_id,
                entry.deleted_count,
                entry.privileged,
                timestamp.replace(tzinfo=None),
            ]
        )

        return AuditLogEntry(
            room_id=entry.room_id,
            action=entry.action,
            actor_id=entry.actor_id,
            target_id=entry.target_id,
            deleted_count=entry.deleted_count,
            privileged=entry.privileged,
            timestamp=timestamp,
        )

    def get_logs(
        self,
        room_id: Optional[str] = None,
        limit: int = 100
    ) -> List[AuditLogEntry]:
        """Get audit logs newest first, optionally filtered by room_id."""
        conn = self._get_connection()

        if room_id:
            result = conn.execute(
                """
                SELECT room_id, action, actor_id, target_id, deleted_count, privileged, timestamp
                FROM moderation_audit
                WHERE room_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                [room_id, limit]
            ).fetchall()
        else:
            result = conn.execute(
                """
                SELECT room_id, action, actor_id, target_id, deleted_count, privileged, timestamp
                FROM moderation_audit
                ORDER BY id DESC
                LIMIT ?
                """,
                [limit]
            ).fetchall()

        return [
            AuditLogEntry(
                room_id=row[0],
                action=ModerationAction(row[1]),
                actor_id=row[2],
                target_id=row[3],
                deleted_count=row[4],
                privileged=bool(row[5]),
                timestamp=row[6].replace(tzinfo=timezone.utc),
            )
            for row in result
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
