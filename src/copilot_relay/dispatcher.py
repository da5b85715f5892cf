"""
Prompt dispatcher — send now or queue behind the outstanding turn.
"""

import logging
from enum import Enum
from typing import Iterable, Optional

from copilot_relay.errors import NoActiveSessionError, ResetInProgressError, SendError
from copilot_relay.state import ChatRegistry, ChatSession

logger = logging.getLogger(__name__)


class SubmitOutcome(str, Enum):
    SENT = "sent"
    QUEUED = "queued"


def compose_prompt(prompt: str, images: Optional[Iterable[str]] = None) -> str:
    """Append attached image URLs to a prompt as reference context."""
    images = list(images or [])
    if not images:
        return prompt
    listing = "\n".join(f"{i}. {url}" for i, url in enumerate(images, start=1))
    return f"{prompt}\n\nReference images:\n{listing}"


class PromptDispatcher:
    def __init__(self, registry: ChatRegistry):
        self._registry = registry

    def attach_image(self, chat_id: int, url: str) -> int:
        """Add an image to the chat's reference context. Returns the new total."""
        chat = self._registry.get_or_create(chat_id)
        chat.attachments.append(url)
        return len(chat.attachments)

    async def submit(
        self,
        chat_id: int,
        prompt: str,
        attachments: Optional[Iterable[str]] = None,
        *,
        message_id: Optional[int] = None,
    ) -> SubmitOutcome:
        """Send a prompt to the chat's assistant session, or queue it.

        Raises NoActiveSessionError / ResetInProgressError without touching
        the queue, and SendError when the assistant refuses the prompt.
        """
        chat = self._registry.get_or_create(chat_id)
        if chat.resetting:
            logger.debug("Chat %s is resetting, rejecting prompt", chat_id)
            raise ResetInProgressError()
        if not chat.has_session:
            logger.debug("No active session for chat %s", chat_id)
            raise NoActiveSessionError()
        if attachments:
            chat.attachments.extend(attachments)

        if chat.busy:
            depth = chat.queue_prompt(prompt)
            logger.debug("Chat %s busy, prompt queued (depth=%d)", chat_id, depth)
            return SubmitOutcome.QUEUED

        chat.original_message_id = message_id
        await self.send_turn(chat, prompt)
        return SubmitOutcome.SENT

    async def send_turn(self, chat: ChatSession, prompt: str) -> None:
        """Mark the chat busy and hand the prompt to the assistant session."""
        session = chat.session
        chat.begin_turn(prompt)
        try:
            await session.send(compose_prompt(prompt, chat.attachments))
        except Exception as e:
            logger.error("Sending prompt for chat %s failed: %s", chat.chat_id, e)
            chat.rollback_turn()
            raise SendError(f"Failed to send prompt: {e}") from e
        logger.debug("Prompt sent for chat %s (turn %d)", chat.chat_id, chat.turn_count)

    async def send_next(self, chat: ChatSession) -> Optional[str]:
        """Send the head of the queue, if any. Returns the prompt that was sent."""
        prompt = chat.pop_prompt()
        if prompt is None:
            return None
        if chat.session is None:
            logger.warning("Chat %s lost its session, dropping queued prompt", chat.chat_id)
            return None
        logger.debug("Sending queued prompt for chat %s (remaining=%d)", chat.chat_id, len(chat.prompt_queue))
        await self.send_turn(chat, prompt)
        return prompt
