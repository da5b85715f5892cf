"""
Chat transport contract and message helpers shared by transports.
"""

from typing import Any, Optional, Protocol

from pydantic import BaseModel

MAX_MESSAGE_LENGTH = 4096


class Button(BaseModel):
    text: str
    callback_data: str


Keyboard = list[list[Button]]


class ChatTransport(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: Optional[int] = None,
        keyboard: Optional[Keyboard] = None,
    ) -> Optional[int]:
        """Send one message. Returns the message id when the transport reports one."""

    async def send_long_message(self, chat_id: int, text: str, *, reply_to: Optional[int] = None) -> None: ...

    async def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> None: ...

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> Any: ...


def split_message(text: str, max_len: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks of at most max_len, preferring newline boundaries."""
    chunks: list[str] = []
    remaining = text
    while remaining:
        chunk = remaining[:max_len]
        if len(remaining) > max_len:
            last_newline = chunk.rfind("\n")
            if last_newline > max_len * 0.8:
                chunk = remaining[: last_newline + 1]
        chunks.append(chunk)
        remaining = remaining[len(chunk):]
    return chunks
