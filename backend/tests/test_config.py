"""Tests for settings loading.

Covers:
* AppSettings   – defaults when the file is missing
* load_settings – YAML parsing, partial sections, env-var override
* Validation    – bounds on limits, unknown log levels
"""
import pytest
import yaml
from pydantic import ValidationError

from app.config import (
    SETTINGS_ENV_VAR,
    AppSettings,
    RoomSettings,
    StoreSettings,
    get_config,
    load_settings,
)


def _write(tmp_path, data):
    path = tmp_path / "chatrelay.settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.yaml")

        assert settings == AppSettings()
        assert settings.store.history_limit == 100
        assert settings.rooms.max_participants == 0
        assert settings.rooms.max_body_length == 2000
        assert settings.moderation.privileged_origins == []
        assert settings.moderation.trust_forwarded_for is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_settings(path) == AppSettings()


class TestLoad:

    def test_partial_sections_merge_with_defaults(self, tmp_path):
        path = _write(tmp_path, {
            "rooms": {"max_participants": 10},
            "moderation": {"privileged_origins": ["10.0.0.0/8"]},
        })

        settings = load_settings(path)

        assert settings.rooms.max_participants == 10
        assert settings.rooms.max_body_length == 2000
        assert settings.moderation.privileged_origins == ["10.0.0.0/8"]
        assert settings.server.port == 8000

    def test_env_var_override(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"server": {"port": 9100}})
        monkeypatch.setenv(SETTINGS_ENV_VAR, str(path))

        assert load_settings().server.port == 9100

    def test_get_config_is_cached(self, settings_file):
        first = get_config()

        assert get_config() is first
        assert first.rooms.max_body_length == 200

    def test_log_level_is_normalised(self, tmp_path):
        settings = load_settings(_write(tmp_path, {"logging": {"level": "DEBUG"}}))
        assert settings.logging.level == "debug"


class TestValidation:

    @pytest.mark.parametrize("limit", [0, 101])
    def test_history_limit_bounds(self, limit):
        with pytest.raises(ValidationError):
            StoreSettings(history_limit=limit)

    def test_negative_participants(self):
        with pytest.raises(ValidationError):
            RoomSettings(max_participants=-1)

    def test_unknown_log_level(self, tmp_path):
        with pytest.raises(ValidationError):
            load_settings(_write(tmp_path, {"logging": {"level": "chatty"}}))
