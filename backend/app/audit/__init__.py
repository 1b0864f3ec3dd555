"""Audit log module for tracking moderation actions."""

from .schemas import AuditLogCreate, AuditLogEntry, ModerationAction
from .service import AuditLogService
from .router import router

__all__ = [
    "AuditLogCreate",
    "AuditLogEntry",
    "AuditLogService",
    "ModerationAction",
    "router",
]
