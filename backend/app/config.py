"""Chat relay application configuration.

Loads settings from a single YAML file:
  * chatrelay.settings.yaml: non-secret configuration

The file location can be overridden with the CHATRELAY_SETTINGS environment
variable. Missing sections fall back to the defaults declared below.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatrelay.settings.yaml")
SETTINGS_ENV_VAR = "CHATRELAY_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"unknown log level: {value}")
        return value.lower()


class StoreSettings(BaseModel):
    """Durable message store (DuckDB)."""
    db_path:       str = "messages.duckdb"
    history_limit: int = Field(default=100, ge=1, le=100)


class RoomSettings(BaseModel):
    max_participants:   int = Field(default=0, ge=0)   # 0 = no limit
    max_body_length:    int = Field(default=2000, ge=1)
    max_room_id_length: int = Field(default=64, ge=1)


class ModerationSettings(BaseModel):
    """Inputs for the origin-based privilege oracle."""
    privileged_origins:  List[str] = Field(default_factory=list)
    trust_forwarded_for: bool      = False


class AuditSettings(BaseModel):
    db_path: str = "moderation_audit.duckdb"


class AppSettings(BaseModel):
    server:     ServerSettings     = Field(default_factory=ServerSettings)
    logging:    LoggingSettings    = Field(default_factory=LoggingSettings)
    store:      StoreSettings      = Field(default_factory=StoreSettings)
    rooms:      RoomSettings       = Field(default_factory=RoomSettings)
    moderation: ModerationSettings = Field(default_factory=ModerationSettings)
    audit:      AuditSettings      = Field(default_factory=AuditSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from *path*, the env override, or the default file."""
    if path is None:
        path = Path(os.environ.get(SETTINGS_ENV_VAR) or SETTINGS_FILE)
    settings_data = _load_yaml(path)

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, store=%s, privileged_origins=%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.store.db_path,
        len(app_settings.moderation.privileged_origins),
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Process-wide settings; call ``get_config.cache_clear()`` to reload."""
    return load_settings()
