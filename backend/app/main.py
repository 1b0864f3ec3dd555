"""Chat Relay Backend Application.

This is the main entry point for the chat relay service: room-scoped
real-time chat with presence, read receipts, optimistic send, moderation
and typing indicators.

Modules:
    - chat: WebSocket chat engine and history endpoints
    - auth: Origin-based moderator privilege
    - audit: DuckDB-based moderation audit log
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.audit.router import router as audit_router
from app.audit.service import AuditLogService
from app.auth.privilege import OriginPrivilegeOracle
from app.chat.engine import ChatEngine
from app.chat.presence import PresenceRegistry
from app.chat.rooms_router import router as rooms_router
from app.chat.router import router as chat_router
from app.chat.store import AsyncMessageStore, MessageStore
from app.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in ("uvicorn.access", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chatrelay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = AsyncMessageStore(MessageStore(config.store.db_path))
    app.state.engine = ChatEngine(
        store,
        presence=PresenceRegistry(),
        history_limit=config.store.history_limit,
        max_participants=config.rooms.max_participants,
        max_body_length=config.rooms.max_body_length,
        max_room_id_length=config.rooms.max_room_id_length,
    )
    app.state.oracle = OriginPrivilegeOracle(
        config.moderation.privileged_origins,
        trust_forwarded_for=config.moderation.trust_forwarded_for,
    )
    app.state.audit = AuditLogService(db_path=config.audit.db_path)
    logger.info(
        f"Chat engine ready on http://{config.server.host}:{config.server.port} "
        f"(store={config.store.db_path}, history_limit={config.store.history_limit})"
    )

    yield  # Application runs here

    # Shutdown
    await app.state.engine.close()
    app.state.audit.close()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chat Relay API",
    description="Real-time room chat with presence, read receipts and moderation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(rooms_router)
app.include_router(audit_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    _server = get_config().server
    uvicorn.run(
        "app.main:app",
        host=_server.host,
        port=_server.port,
        log_level=get_config().logging.level,
    )
