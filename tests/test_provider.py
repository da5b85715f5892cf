"""Provider info queried from the assistant client at startup."""

import pytest

from copilot_relay.errors import SessionCreationError
from copilot_relay.provider import ProviderInfo, fetch_provider_info, model_vendor, render_provider_info

from fakes import FakeClientFactory, ProviderClient


class FailingStart(ProviderClient):
    async def start(self) -> None:
        raise RuntimeError("cli not found")


class TestFetchProviderInfo:
    @pytest.mark.asyncio
    async def test_collects_status_auth_and_models(self, tmp_path):
        factory = FakeClientFactory(ProviderClient)
        info = await fetch_provider_info(factory, cwd=str(tmp_path))

        assert info.status.version == "0.0.339"
        assert info.status.protocol_version == 2
        assert info.auth.is_authenticated
        assert info.auth.login == "octocat"
        assert info.model_ids == ["gpt-5", "claude-sonnet-4.5", "o1-mini"]
        assert info.models[0].vision
        assert not info.models[2].vision
        client = factory.clients[0]
        assert client.cwd == str(tmp_path)
        assert client.started and client.stopped

    @pytest.mark.asyncio
    async def test_failed_query_leaves_part_out(self):
        class NoAuth(ProviderClient):
            auth = RuntimeError("not logged in")

        info = await fetch_provider_info(FakeClientFactory(NoAuth))
        assert info.auth is None
        assert info.status is not None
        assert len(info.models) == 3

    @pytest.mark.asyncio
    async def test_malformed_entries_are_skipped(self):
        class Odd(ProviderClient):
            models = [{"id": "gpt-5"}, {"name": "missing id"}]

        info = await fetch_provider_info(FakeClientFactory(Odd))
        assert info.model_ids == ["gpt-5"]

    @pytest.mark.asyncio
    async def test_client_without_queries_gives_empty_info(self):
        info = await fetch_provider_info(FakeClientFactory())
        assert info.is_empty

    @pytest.mark.asyncio
    async def test_start_failure(self):
        factory = FakeClientFactory(FailingStart)
        with pytest.raises(SessionCreationError, match="cli not found"):
            await fetch_provider_info(factory)
        assert factory.clients[0].stopped


class TestRender:
    def test_vendor_groups(self):
        assert model_vendor("gpt-5") == "OpenAI"
        assert model_vendor("o1-mini") == "OpenAI"
        assert model_vendor("claude-sonnet-4.5") == "Anthropic"
        assert model_vendor("gemini-2.5-pro") == "Google"
        assert model_vendor("grok-code") == "Other"

    @pytest.mark.asyncio
    async def test_full_summary(self):
        info = await fetch_provider_info(FakeClientFactory(ProviderClient))
        text = render_provider_info(info)
        lines = text.splitlines()
        assert lines[0] == "📊 Copilot provider info"
        assert "Protocol version: 2" in lines
        assert "Host: github.com" in lines
        assert "🤖 Available models (3)" in lines
        assert lines.index("OpenAI:") < lines.index("  • o1-mini")
        assert "  • claude-sonnet-4.5 👁️" in lines

    def test_unauthenticated(self):
        info = ProviderInfo.model_validate({"auth": {"isAuthenticated": False, "statusMessage": "run copilot login"}})
        text = render_provider_info(info)
        assert "Authenticated: ❌ no" in text
        assert "Status: run copilot login" in text
        assert "Available models" not in text
