"""Assistant event handling: answers, tool calls and reactions."""

import pytest

from copilot_relay.errors import EventParseError
from copilot_relay.handlers import NO_OUTPUT, ToolResultStore, StoredText, format_tool_results

from fakes import answer


def tool_start(call_id="call-1", name="bash", event_id="evt-1", arguments=None):
    data = {"toolCallId": call_id, "toolName": name}
    if arguments is not None:
        data["arguments"] = arguments
    return {"type": "tool.execution_start", "id": event_id, "data": data}


def tool_complete(call_id="call-1", **data):
    return {"type": "tool.execution_complete", "data": {"toolCallId": call_id, **data}}


def test_format_tool_results():
    assert format_tool_results(None) is None
    assert format_tool_results('{"a": 1}') == '{\n  "a": 1\n}'
    assert format_tool_results("plain text") == "plain text"
    assert format_tool_results(["x"]) == '[\n  "x"\n]'


def test_result_store_pops_once():
    store = ToolResultStore()
    key = store.new_key(5)
    assert key.startswith("5:")
    store.put_result(key, StoredText("bash", "ok", 1))
    assert store.pop_result(key).text == "ok"
    assert store.pop_result(key) is None
    assert store.pop_params(key) is None


class TestAnswers:
    @pytest.mark.asyncio
    async def test_final_answer_has_session_header(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, answer("Here you go"))
        text = core.transport.long_messages[0]["text"]
        assert text == f"🔵 Copilot ∙ {tmp_path.resolve().name}\n\nHere you go"

    @pytest.mark.asyncio
    async def test_blank_answer_is_not_relayed(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, answer("   "))
        assert core.transport.long_messages == []

    @pytest.mark.asyncio
    async def test_partial_answers(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(
            1,
            {"type": "assistant.message_delta", "data": {"deltaContent": "Thinking"}},
            {"type": "assistant.message_delta", "data": {"deltaContent": "  "}},
        )
        assert len(core.transport.messages) == 1
        assert core.transport.messages[0]["text"].endswith("Thinking")

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_ignored(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, {"type": "session.usage", "data": {"tokens": 10}})
        assert core.transport.messages == []

    @pytest.mark.asyncio
    async def test_event_for_unknown_chat(self, core):
        await core.handler(99, answer("hi"), 1)
        assert core.transport.long_messages == []

    @pytest.mark.asyncio
    async def test_malformed_event_raises(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        generation = core.registry.get(1).generation
        with pytest.raises(EventParseError):
            await core.handler(1, {"type": "assistant.message_delta", "data": {}}, generation)

    @pytest.mark.asyncio
    async def test_malformed_event_does_not_stop_later_events(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, {"data": {}}, answer("still here"))
        assert "still here" in core.transport.long_messages[0]["text"]


class TestTools:
    @pytest.mark.asyncio
    async def test_start_announces_tool_with_buttons(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, tool_start(arguments={"command": "ls"}))

        msg = core.transport.messages[0]
        assert "🛠️ Running tool: bash" in msg["text"]
        actions = [b.callback_data.split(":")[0] for b in msg["keyboard"][0]]
        assert actions == ["show_params", "show_result"]
        key = msg["keyboard"][0][0].callback_data.split(":", 1)[1]
        params = core.handler.results.pop_params(key)
        assert params.text == '{\n  "command": "ls"\n}'
        assert "call-1" in core.registry.get(1).tool_starts

    @pytest.mark.asyncio
    async def test_success_reacts_and_stores_result(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, tool_start(), tool_complete(success=True, result={"content": "file.txt"}))

        start_msg = core.transport.messages[0]
        assert core.transport.reactions == [(1, start_msg["message_id"], "👍")]
        key = start_msg["keyboard"][0][-1].callback_data.split(":", 1)[1]
        stored = core.handler.results.pop_result(key)
        assert stored.text == "file.txt"
        assert stored.message_id == start_msg["message_id"]
        assert core.registry.get(1).tool_starts == {}

    @pytest.mark.asyncio
    async def test_failure_reacts_thumbs_down(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, tool_start(), tool_complete(success=False, error={"message": "exit 1"}))

        start_msg = core.transport.messages[0]
        assert core.transport.reactions == [(1, start_msg["message_id"], "👎")]
        key = start_msg["keyboard"][0][-1].callback_data.split(":", 1)[1]
        assert core.handler.results.pop_result(key).text == "❗ Tool failed:\nexit 1"

    @pytest.mark.asyncio
    async def test_empty_output(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, tool_start(), tool_complete(success=True))
        key = core.transport.messages[0]["keyboard"][0][-1].callback_data.split(":", 1)[1]
        assert core.handler.results.pop_result(key).text == NO_OUTPUT

    @pytest.mark.asyncio
    async def test_completion_matched_by_parent_id(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(
            1,
            tool_start(call_id=None, event_id="evt-9"),
            {"type": "tool.execution_complete", "parentId": "evt-9", "data": {"success": True}},
        )
        assert len(core.transport.reactions) == 1

    @pytest.mark.asyncio
    async def test_unmatched_completion_is_ignored(self, core, tmp_path):
        await core.start(1, str(tmp_path))
        await core.emit(1, tool_complete(call_id="nope", success=True))
        assert core.transport.reactions == []

    @pytest.mark.asyncio
    async def test_reaction_failure_is_logged(self, core, tmp_path, caplog):
        await core.start(1, str(tmp_path))

        async def broken_reaction(chat_id, message_id, emoji):
            raise RuntimeError("reactions unavailable")

        core.transport.set_reaction = broken_reaction
        await core.emit(1, tool_start(), tool_complete(success=True))
        assert "Failed to set reaction" in caplog.text
        assert core.registry.get(1).tool_starts == {}
