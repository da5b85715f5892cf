import pytest

from copilot_relay.config import Settings

from fakes import Core


@pytest.fixture
def core() -> Core:
    return Core()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        telegram_token="test-token",
        models=["gpt-5", "gpt-5-mini", "claude-sonnet-4.5"],
        default_model="gpt-5-mini",
        destroy_timeout=0.2,
        stop_timeout=0.2,
        shutdown_grace=0.5,
    )
