"""copilot-relay command line."""

import json

import pytest
from click.testing import CliRunner

from copilot_relay import __version__
from copilot_relay.cli.main import main


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ("DIRECTORY_PATTERNS", "DIRECTORIES_FILE", "COPILOT_MODELS", "COPILOT_MODEL",
                 "TELEGRAM_BOT_TOKEN", "COPILOT_CLIENT_FACTORY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_dirs_json(monkeypatch, tmp_path):
    (tmp_path / "proj").mkdir()
    monkeypatch.setenv("DIRECTORY_PATTERNS", f"{tmp_path}/*")
    result = CliRunner().invoke(main, ["dirs", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output) == [str(tmp_path / "proj")]


def test_models_table(monkeypatch):
    monkeypatch.setenv("COPILOT_MODELS", "gpt-5,gpt-4.1")
    monkeypatch.setenv("COPILOT_MODEL", "gpt-4.1")
    result = CliRunner().invoke(main, ["models"])
    assert result.exit_code == 0
    assert "gpt-5" in result.output
    assert "default" in result.output


def test_run_requires_token():
    result = CliRunner().invoke(main, ["run"])
    assert result.exit_code == 1
    assert "TELEGRAM_BOT_TOKEN" in result.output


def test_invalid_configuration(monkeypatch):
    monkeypatch.setenv("COPILOT_CLIENT_FACTORY", "no-colon")
    result = CliRunner().invoke(main, ["models"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
