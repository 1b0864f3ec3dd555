"""Shared test fixtures and configuration for backend tests."""
import pytest
import yaml
from fastapi.testclient import TestClient

from app.chat.store import AsyncMessageStore, MessageStore
from app.config import SETTINGS_ENV_VAR, get_config
from app.main import app


class FakeConnection:
    """Stand-in for a WebSocket that records every frame sent to it."""

    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def types(self):
        return [frame["type"] for frame in self.sent]

    def of_type(self, frame_type: str):
        return [frame for frame in self.sent if frame["type"] == frame_type]


@pytest.fixture
def fake_connection():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def message_store():
    """In-memory DuckDB message store."""
    store = MessageStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def async_store(message_store):
    return AsyncMessageStore(message_store)


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    """Point the app at a settings file using in-memory databases."""
    path = tmp_path / "chatrelay.settings.yaml"
    path.write_text(yaml.safe_dump({
        "logging": {"level": "debug"},
        "store": {"db_path": ":memory:", "history_limit": 100},
        "rooms": {"max_participants": 0, "max_body_length": 200},
        "moderation": {
            "privileged_origins": ["10.0.0.0/8"],
            "trust_forwarded_for": True,
        },
        "audit": {"db_path": ":memory:"},
    }))
    monkeypatch.setenv(SETTINGS_ENV_VAR, str(path))
    get_config.cache_clear()
    yield path
    get_config.cache_clear()


@pytest.fixture
def api_client(settings_file):
    """Provide a TestClient for the main FastAPI app with its lifespan running."""
    with TestClient(app) as client:
        yield client
