"""Moderation audit API endpoints.

Endpoints:
    GET /audit/logs: Retrieve audit log entries

Data Storage:
    Entries are written by the chat WebSocket handler after a delete or a
    room clear is applied, and stored in a local DuckDB database.
"""
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from .schemas import AuditLogEntry

router = APIRouter(prefix="/audit", tags=["audit"])


class GetLogsResponse(BaseModel):
    """Response from the get-logs endpoint.

    Attributes:
        logs: List of audit log entries (newest first).
        count: Number of entries returned.
    """
    logs: List[AuditLogEntry] = Field(..., description="Log entries")
    count: int = Field(..., description="Number of entries")


@router.get("/logs", response_model=GetLogsResponse)
async def get_logs(
    request: Request,
    room_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
) -> GetLogsResponse:
    """Retrieve audit log entries, newest first.

    Args:
        room_id: Optional room ID to filter by.
        limit: Maximum entries to return (default 100, max 1000).
    """
    logs = request.app.state.audit.get_logs(room_id=room_id, limit=limit)
    return GetLogsResponse(logs=logs, count=len(logs))
