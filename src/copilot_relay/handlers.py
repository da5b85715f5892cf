"""
Handlers for assistant session events, run one at a time per chat by the
EventSequencer.

- assistant.message: relay the answer; flush a deferred completion notice
- assistant.message_delta: relay non-blank fragments
- tool.execution_start: announce the tool and remember the message
- tool.execution_complete: react on the announcement, keep the output for
  on-demand reveal
- session.idle: finish the turn and send the next queued prompt
"""

import json
import logging
import uuid
from typing import Any, Optional

from copilot_relay.dispatcher import PromptDispatcher
from copilot_relay.errors import SendError
from copilot_relay.models.events import (
    AssistantMessage,
    AssistantMessageDelta,
    SessionIdle,
    ToolExecutionComplete,
    ToolExecutionStart,
    UnhandledEvent,
    parse_event,
)
from copilot_relay.state import ChatRegistry, ChatSession, ToolStartEntry
from copilot_relay.status import render_status, session_header, session_keyboard
from copilot_relay.transport.base import Button, ChatTransport

logger = logging.getLogger(__name__)

REACTION_SUCCESS = "👍"
REACTION_FAILURE = "👎"
NO_OUTPUT = "(no output)"


def format_tool_results(raw: Any) -> Optional[str]:
    """Pretty-print tool output; JSON strings are re-indented, other text is kept."""
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            return json.dumps(json.loads(raw), indent=2, ensure_ascii=False)
        except ValueError:
            return raw
    try:
        return json.dumps(raw, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(raw)


class StoredText:
    __slots__ = ("tool_name", "text", "message_id")

    def __init__(self, tool_name: str, text: str, message_id: Optional[int]):
        self.tool_name = tool_name
        self.text = text
        self.message_id = message_id


class ToolResultStore:
    """Tool parameters and results kept until the user asks to see them."""

    def __init__(self) -> None:
        self._results: dict[str, StoredText] = {}
        self._params: dict[str, StoredText] = {}

    @staticmethod
    def new_key(chat_id: int) -> str:
        return f"{chat_id}:{uuid.uuid4().hex[:12]}"

    def put_params(self, key: str, item: StoredText) -> None:
        self._params[key] = item

    def put_result(self, key: str, item: StoredText) -> None:
        self._results[key] = item

    def pop_params(self, key: str) -> Optional[StoredText]:
        return self._params.pop(key, None)

    def pop_result(self, key: str) -> Optional[StoredText]:
        return self._results.pop(key, None)


class SessionEventHandler:
    def __init__(
        self,
        registry: ChatRegistry,
        transport: ChatTransport,
        dispatcher: PromptDispatcher,
        results: Optional[ToolResultStore] = None,
        models: Optional[list[str]] = None,
    ):
        self._registry = registry
        self._transport = transport
        self._dispatcher = dispatcher
        self.results = results or ToolResultStore()
        self._models = models or []

    async def __call__(self, chat_id: int, raw: Any, generation: int) -> None:
        chat = self._registry.get(chat_id)
        if chat is None:
            logger.debug("No chat state for %s, dropping event", chat_id)
            return
        if generation != chat.generation:
            logger.debug("Ignoring event from a replaced session for chat %s", chat_id)
            return
        if chat.resetting:
            logger.debug("Ignoring event for chat %s while it is resetting", chat_id)
            return

        event = parse_event(raw)
        logger.debug("Handling %s for chat %s", event.type, chat_id)
        if isinstance(event, AssistantMessage):
            await self.on_final_answer(chat, event)
        elif isinstance(event, AssistantMessageDelta):
            await self.on_partial_answer(chat, event)
        elif isinstance(event, ToolExecutionStart):
            await self.on_tool_start(chat, event)
        elif isinstance(event, ToolExecutionComplete):
            await self.on_tool_complete(chat, event)
        elif isinstance(event, SessionIdle):
            await self.on_idle(chat)
        elif isinstance(event, UnhandledEvent):
            logger.debug("Unhandled event type: %s", event.type)

    async def _say(self, chat: ChatSession, text: str, **kwargs: Any) -> Optional[int]:
        return await self._transport.send_message(chat.chat_id, f"{session_header(chat)}\n\n{text}", **kwargs)

    async def send_completion(self, chat: ChatSession) -> None:
        await self._transport.send_message(
            chat.chat_id,
            render_status(chat, show_completion=True),
            reply_to=chat.original_message_id,
            keyboard=session_keyboard(chat, self._models),
        )

    async def on_final_answer(self, chat: ChatSession, event: AssistantMessage) -> None:
        if event.content.strip():
            await self._transport.send_long_message(chat.chat_id, f"{session_header(chat)}\n\n{event.content}")
        chat.awaiting_final = False
        if chat.pending_completion and not chat.prompt_queue:
            chat.pending_completion = False
            await self.send_completion(chat)

    async def on_partial_answer(self, chat: ChatSession, event: AssistantMessageDelta) -> None:
        if event.delta_content.strip():
            await self._say(chat, event.delta_content)

    async def on_tool_start(self, chat: ChatSession, event: ToolExecutionStart) -> None:
        params_text: Optional[str] = None
        if event.arguments is not None:
            params_text = event.arguments if isinstance(event.arguments, str) else format_tool_results(event.arguments)

        result_key = self.results.new_key(chat.chat_id)
        buttons = []
        if params_text:
            buttons.append(Button(text="📋 Show parameters", callback_data=f"show_params:{result_key}"))
        buttons.append(Button(text="📄 Show result", callback_data=f"show_result:{result_key}"))
        message_id = await self._say(chat, f"🛠️ Running tool: {event.tool_name}", keyboard=[buttons])

        if params_text:
            self.results.put_params(result_key, StoredText(event.tool_name, params_text, message_id))
        key = event.tool_call_id or event.id
        if key is None or message_id is None:
            logger.debug("Tool start for %s has no correlation key or message id", event.tool_name)
            return
        chat.tool_starts[key] = ToolStartEntry(
            message_id=message_id,
            tool_call_id=key,
            tool_name=event.tool_name,
            event_id=event.id,
            result_key=result_key,
        )

    async def on_tool_complete(self, chat: ChatSession, event: ToolExecutionComplete) -> None:
        entry = chat.find_tool_start(event.tool_call_id, event.parent_id)
        tool_name = entry.tool_name if entry else (event.tool_name or "tool")
        logger.debug("Tool %s completed (call=%s, failed=%s)", tool_name, event.tool_call_id, event.failed)
        if entry is None:
            logger.debug("No start message found for tool %s", tool_name)
            return

        if event.error_message:
            text = f"❗ Tool failed:\n{event.error_message}"
        else:
            text = format_tool_results(event.output) or ""
            if not text.strip():
                text = NO_OUTPUT
        self.results.put_result(entry.result_key, StoredText(tool_name, text, entry.message_id))

        reaction = REACTION_FAILURE if event.failed else REACTION_SUCCESS
        try:
            await self._transport.set_reaction(chat.chat_id, entry.message_id, reaction)
        except Exception as e:
            logger.warning("Failed to set reaction on message %s: %s", entry.message_id, e)
        chat.tool_starts.pop(entry.tool_call_id, None)

    async def on_idle(self, chat: ChatSession) -> None:
        logger.debug("Session idle for chat %s (queued=%d)", chat.chat_id, len(chat.prompt_queue))
        chat.finish_turn()
        if not chat.prompt_queue:
            if chat.awaiting_final:
                chat.pending_completion = True
            else:
                await self.send_completion(chat)
            return
        # Refused prompts leave the chat idle; keep draining, report afterwards.
        failures: list[SendError] = []
        while chat.prompt_queue and not chat.busy:
            try:
                await self._dispatcher.send_next(chat)
            except SendError as e:
                failures.append(e)
        for err in failures:
            await self._say(chat, f"❗ {err}")
