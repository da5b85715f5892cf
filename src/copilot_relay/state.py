"""
Per-chat session state machine.

    NO_SESSION --attach--> IDLE --begin_turn--> BUSY --finish_turn--> IDLE
    IDLE|BUSY --begin_reset--> RESETTING --attach--> IDLE
    RESETTING --end_reset (no session)--> NO_SESSION

`busy` and `resetting` are derived from the single `state` field, so a
chat can never be both.
"""

import logging
import random
from collections import deque
from enum import Enum
from typing import Any, Iterable, Optional

from copilot_relay.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

MAX_RECENT_MODELS = 2


class ChatState(str, Enum):
    NO_SESSION = "no_session"
    IDLE = "idle"
    BUSY = "busy"
    RESETTING = "resetting"


class ToolStartEntry:
    """Correlation entry linking a tool call to the message announcing it."""

    __slots__ = ("message_id", "tool_call_id", "tool_name", "event_id", "result_key")

    def __init__(self, message_id: int, tool_call_id: str, tool_name: str,
                 event_id: Optional[str], result_key: str):
        self.message_id = message_id
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name
        self.event_id = event_id
        self.result_key = result_key

    def __repr__(self) -> str:
        return f"ToolStartEntry(tool_call_id={self.tool_call_id!r}, tool_name={self.tool_name!r})"


class ChatSession:
    def __init__(self, chat_id: int, model: str, emoji: Optional[str] = None):
        self.chat_id = chat_id
        self.model = model
        self.emoji = emoji
        self.state = ChatState.NO_SESSION
        self.client: Any = None
        self.session: Any = None
        self.unsubscribe: Any = None
        self.directory: Optional[str] = None
        self.generation = 0
        self.prompt_queue: deque[str] = deque()
        self.current_prompt: Optional[str] = None
        self.turn_count = 0
        self.awaiting_final = False
        self.pending_completion = False
        self.original_message_id: Optional[int] = None
        self.attachments: list[str] = []
        self.tool_starts: dict[str, ToolStartEntry] = {}
        self.recent_models: list[str] = []
        self.available_dirs: list[str] = []

    def __repr__(self) -> str:
        return f"ChatSession(chat_id={self.chat_id!r}, state={self.state.value!r}, model={self.model!r})"

    @property
    def busy(self) -> bool:
        return self.state is ChatState.BUSY

    @property
    def resetting(self) -> bool:
        return self.state is ChatState.RESETTING

    @property
    def has_session(self) -> bool:
        return self.session is not None and self.directory is not None

    # -- lifecycle transitions -------------------------------------------------

    def attach(self, client: Any, session: Any, directory: str, emoji: Optional[str] = None) -> int:
        """Install a freshly created assistant session. Returns its generation."""
        self.client = client
        self.session = session
        self.directory = directory
        self.generation += 1
        self.state = ChatState.IDLE
        self.prompt_queue.clear()
        self.current_prompt = None
        self.awaiting_final = False
        self.pending_completion = False
        self.tool_starts.clear()
        if emoji is not None:
            self.emoji = emoji
        return self.generation

    def detach(self) -> None:
        """Forget the assistant session. A chat that is resetting stays resetting."""
        self.client = None
        self.session = None
        self.unsubscribe = None
        self.directory = None
        self.generation += 1
        self.current_prompt = None
        self.prompt_queue.clear()
        self.tool_starts.clear()
        if self.state is not ChatState.RESETTING:
            self.state = ChatState.NO_SESSION

    def begin_reset(self) -> None:
        if self.state not in (ChatState.IDLE, ChatState.BUSY):
            raise InvalidTransitionError("reset", self.state.value)
        self.state = ChatState.RESETTING
        self.prompt_queue.clear()
        self.current_prompt = None
        self.turn_count = 0
        self.awaiting_final = False
        self.pending_completion = False

    def end_reset(self) -> None:
        if self.state is not ChatState.RESETTING:
            return
        self.state = ChatState.IDLE if self.has_session else ChatState.NO_SESSION

    # -- turn transitions ------------------------------------------------------

    def begin_turn(self, prompt: str) -> None:
        if self.state is not ChatState.IDLE:
            raise InvalidTransitionError("send a prompt", self.state.value)
        self.state = ChatState.BUSY
        self.current_prompt = prompt
        self.turn_count += 1
        self.awaiting_final = True
        self.pending_completion = False

    def rollback_turn(self) -> None:
        """Undo begin_turn after the assistant refused the prompt."""
        if self.state is ChatState.BUSY:
            self.state = ChatState.IDLE
        self.current_prompt = None
        self.awaiting_final = False

    def finish_turn(self) -> None:
        if self.state is ChatState.BUSY:
            self.state = ChatState.IDLE
        self.current_prompt = None

    def queue_prompt(self, prompt: str) -> int:
        if self.state is not ChatState.BUSY:
            raise InvalidTransitionError("queue a prompt", self.state.value)
        self.prompt_queue.append(prompt)
        return len(self.prompt_queue)

    def pop_prompt(self) -> Optional[str]:
        return self.prompt_queue.popleft() if self.prompt_queue else None

    # -- misc ------------------------------------------------------------------

    def switch_model(self, model: str) -> None:
        if self.model and self.model != model:
            recent = [m for m in self.recent_models if m != self.model]
            recent.insert(0, self.model)
            self.recent_models = recent[:MAX_RECENT_MODELS]
        self.model = model

    def find_tool_start(self, tool_call_id: Optional[str], parent_id: Optional[str]) -> Optional[ToolStartEntry]:
        if tool_call_id and tool_call_id in self.tool_starts:
            return self.tool_starts[tool_call_id]
        if parent_id:
            for entry in self.tool_starts.values():
                if entry.event_id == parent_id:
                    return entry
        return None


class ChatRegistry:
    """All chat sessions of this process, keyed by chat id."""

    def __init__(self, default_model: str, emojis: Iterable[str]):
        self._default_model = default_model
        self._emojis = list(emojis)
        self._chats: dict[int, ChatSession] = {}

    @property
    def default_model(self) -> str:
        return self._default_model

    def get(self, chat_id: int) -> Optional[ChatSession]:
        return self._chats.get(chat_id)

    def get_or_create(self, chat_id: int, model: Optional[str] = None) -> ChatSession:
        chat = self._chats.get(chat_id)
        if chat is None:
            chat = ChatSession(chat_id, model or self._default_model, emoji=self.pick_emoji())
            self._chats[chat_id] = chat
            logger.debug("Created chat state for %s (model=%s)", chat_id, chat.model)
        return chat

    def pick_emoji(self, exclude: Optional[int] = None) -> str:
        """First marker not held by another chat's active session; random reuse once the pool runs out."""
        used = {c.emoji for cid, c in self._chats.items() if c.emoji and cid != exclude and c.has_session}
        for emoji in self._emojis:
            if emoji not in used:
                return emoji
        return random.choice(self._emojis)

    def __iter__(self):
        return iter(list(self._chats.values()))

    def __len__(self) -> int:
        return len(self._chats)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._chats
