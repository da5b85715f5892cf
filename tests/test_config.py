"""Settings loading from the environment, .env files and directories.json."""

import json

import pytest

from copilot_relay.config import DEFAULT_MODEL, DEFAULT_MODELS, Settings, load_directory_patterns, load_settings
from copilot_relay.errors import ConfigError

ENV_VARS = (
    "TELEGRAM_BOT_TOKEN", "OWNER_CHAT_ID", "COPILOT_MODEL", "COPILOT_MODELS",
    "COPILOT_CLIENT_FACTORY", "DIRECTORY_PATTERNS", "DIRECTORIES_FILE", "RELAY_LOG_LEVEL",
    "RELAY_DESTROY_TIMEOUT", "RELAY_STOP_TIMEOUT", "RELAY_SHUTDOWN_GRACE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = load_settings()
    assert settings.telegram_token is None
    assert settings.owner_chat_id is None
    assert settings.default_model == DEFAULT_MODEL
    assert settings.models == DEFAULT_MODELS
    assert settings.directory_patterns == []
    assert settings.destroy_timeout == 5.0
    assert settings.stop_timeout == 3.0
    assert settings.shutdown_grace == 10.0


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("OWNER_CHAT_ID", "42")
    monkeypatch.setenv("COPILOT_MODEL", "gpt-5")
    monkeypatch.setenv("COPILOT_MODELS", "gpt-5, gpt-4.1 ,")
    monkeypatch.setenv("RELAY_LOG_LEVEL", "debug")
    monkeypatch.setenv("RELAY_SHUTDOWN_GRACE", "2.5")
    settings = load_settings()
    assert settings.telegram_token == "123:abc"
    assert settings.owner_chat_id == 42
    assert settings.default_model == "gpt-5"
    assert settings.models == ["gpt-5", "gpt-4.1"]
    assert settings.log_level == "DEBUG"
    assert settings.shutdown_grace == 2.5


def test_env_file(tmp_path):
    env_file = tmp_path / "relay.env"
    env_file.write_text("TELEGRAM_BOT_TOKEN=from-file\nOWNER_CHAT_ID=7\n")
    settings = load_settings(str(env_file))
    assert settings.telegram_token == "from-file"
    assert settings.owner_chat_id == 7


def test_invalid_values(monkeypatch):
    monkeypatch.setenv("OWNER_CHAT_ID", "not-a-number")
    with pytest.raises(ConfigError):
        load_settings()


def test_non_positive_timeout(monkeypatch):
    monkeypatch.setenv("RELAY_STOP_TIMEOUT", "0")
    with pytest.raises(ConfigError):
        load_settings()


def test_bad_client_factory_path(monkeypatch):
    monkeypatch.setenv("COPILOT_CLIENT_FACTORY", "copilot.CopilotClient")
    with pytest.raises(ConfigError):
        load_settings()


def test_is_owner():
    assert Settings().is_owner(1)
    owned = Settings(owner_chat_id=5)
    assert owned.is_owner(5)
    assert not owned.is_owner(6)


class TestDirectoryPatterns:
    def test_env_wins_over_file(self, monkeypatch, tmp_path):
        (tmp_path / "directories.json").write_text(json.dumps(["/from/file"]))
        monkeypatch.setenv("DIRECTORY_PATTERNS", "~/a/*, /b")
        assert load_directory_patterns() == ["~/a/*", "/b"]

    def test_reads_json_file(self, tmp_path):
        (tmp_path / "directories.json").write_text(json.dumps(["/srv/*", "/opt/app"]))
        assert load_directory_patterns() == ["/srv/*", "/opt/app"]

    def test_custom_file(self, monkeypatch, tmp_path):
        path = tmp_path / "dirs.json"
        path.write_text(json.dumps(["/x"]))
        monkeypatch.setenv("DIRECTORIES_FILE", str(path))
        assert load_directory_patterns() == ["/x"]

    def test_missing_file(self):
        assert load_directory_patterns() == []

    def test_invalid_json(self, tmp_path):
        (tmp_path / "directories.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_directory_patterns()

    def test_not_a_list(self, tmp_path):
        (tmp_path / "directories.json").write_text(json.dumps({"dirs": []}))
        with pytest.raises(ConfigError):
            load_directory_patterns()
