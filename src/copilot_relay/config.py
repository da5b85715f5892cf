"""
Relay configuration — environment variables, optional .env file and
directories.json.
"""

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from copilot_relay.errors import ConfigError

DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_MODELS = [
    "claude-sonnet-4.5",
    "claude-haiku-4.5",
    "claude-opus-4.5",
    "claude-sonnet-4",
    "gpt-5.2-codex",
    "gpt-5.1-codex-max",
    "gpt-5.1-codex",
    "gpt-5.2",
    "gpt-5.1",
    "gpt-5",
    "gpt-5.1-codex-mini",
    "gpt-5-mini",
    "gpt-4.1",
    "gemini-3-pro-preview",
]
SESSION_EMOJIS = [
    "🔵", "🟢", "🔴", "🟣", "🟡", "🟠", "✨", "🔥", "🌟",
    "🚀", "🧠", "🔔", "🎯", "✅", "🔚", "⚡️", "🌈", "🍀",
]
DEFAULT_CLIENT_FACTORY = "copilot:CopilotClient"
DEFAULT_DIRECTORIES_FILE = "directories.json"


class Settings(BaseModel):
    telegram_token: Optional[str] = None
    owner_chat_id: Optional[int] = None
    default_model: str = DEFAULT_MODEL
    models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    directory_patterns: list[str] = Field(default_factory=list)
    client_factory: str = DEFAULT_CLIENT_FACTORY
    session_emojis: list[str] = Field(default_factory=lambda: list(SESSION_EMOJIS))
    log_level: str = "INFO"
    # Teardown timeouts (seconds) used during shutdown
    destroy_timeout: float = 5.0
    stop_timeout: float = 3.0
    shutdown_grace: float = 10.0

    @field_validator("models", "session_emojis")
    @classmethod
    def _not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("must contain at least one entry")
        return value

    @field_validator("destroy_timeout", "stop_timeout", "shutdown_grace")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("client_factory")
    @classmethod
    def _import_path(cls, value: str) -> str:
        module, _, attr = value.partition(":")
        if not module or not attr:
            raise ValueError("expected 'module:attribute'")
        return value

    def is_owner(self, chat_id: int) -> bool:
        """Every chat is allowed when no owner is configured."""
        return self.owner_chat_id is None or chat_id == self.owner_chat_id


def _split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_directory_patterns(directories_file: Optional[str] = None) -> list[str]:
    """DIRECTORY_PATTERNS wins; otherwise read a JSON array from directories.json."""
    patterns = _split_list(os.environ.get("DIRECTORY_PATTERNS"))
    if patterns:
        return patterns
    path = Path(directories_file or os.environ.get("DIRECTORIES_FILE") or DEFAULT_DIRECTORIES_FILE)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}")
    if not isinstance(data, list):
        raise ConfigError(f"{path} must contain a JSON array of patterns")
    return [str(p) for p in data]


def load_settings(env_file: Optional[str] = None) -> Settings:
    dotenv_path = env_file or find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path)
    env = os.environ
    raw: dict = {
        "telegram_token": env.get("TELEGRAM_BOT_TOKEN") or None,
        "directory_patterns": load_directory_patterns(),
    }
    if env.get("OWNER_CHAT_ID"):
        raw["owner_chat_id"] = env["OWNER_CHAT_ID"]
    if env.get("COPILOT_MODEL"):
        raw["default_model"] = env["COPILOT_MODEL"]
    if env.get("COPILOT_MODELS"):
        raw["models"] = _split_list(env["COPILOT_MODELS"])
    if env.get("COPILOT_CLIENT_FACTORY"):
        raw["client_factory"] = env["COPILOT_CLIENT_FACTORY"]
    if env.get("RELAY_LOG_LEVEL"):
        raw["log_level"] = env["RELAY_LOG_LEVEL"].upper()
    for key, name in (
        ("destroy_timeout", "RELAY_DESTROY_TIMEOUT"),
        ("stop_timeout", "RELAY_STOP_TIMEOUT"),
        ("shutdown_grace", "RELAY_SHUTDOWN_GRACE"),
    ):
        if env.get(name):
            raw[key] = env[name]
    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")
