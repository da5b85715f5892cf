"""
Telegram Bot API transport over httpx.
"""

import logging
from typing import Any, Optional

import httpx

from copilot_relay.errors import TransportError
from copilot_relay.transport.base import Keyboard, split_message

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.telegram.org"
POLL_TIMEOUT_S = 30


class TelegramTransport:
    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._token = token
        self._api_url = api_url.rstrip("/")
        # Long polls hold the request open for POLL_TIMEOUT_S
        self._client = client or httpx.AsyncClient(
            base_url=f"{self._api_url}/bot{token}",
            headers={"User-Agent": "copilot-relay/0.1.0", "Accept": "application/json"},
            timeout=timeout + POLL_TIMEOUT_S,
        )

    async def _call(self, method: str, body: Optional[dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.post(f"/{method}", json=body or {})
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {e}")
        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.status_code >= 400 or not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else resp.text[:200]
            raise TransportError(
                f"{method} failed: HTTP {resp.status_code}: {description}",
                {"method": method, "status": resp.status_code},
            )
        return data.get("result")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: Optional[int] = None,
        keyboard: Optional[Keyboard] = None,
    ) -> Optional[int]:
        body: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to is not None:
            body["reply_to_message_id"] = reply_to
            body["allow_sending_without_reply"] = True
        if keyboard:
            body["reply_markup"] = {
                "inline_keyboard": [[b.model_dump() for b in row] for row in keyboard],
            }
        result = await self._call("sendMessage", body)
        return result.get("message_id") if isinstance(result, dict) else None

    async def send_long_message(self, chat_id: int, text: str, *, reply_to: Optional[int] = None) -> None:
        """Only the first chunk replies to the original message."""
        for i, chunk in enumerate(split_message(text)):
            await self.send_message(chat_id, chunk, reply_to=reply_to if i == 0 else None)

    async def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> None:
        await self._call("setMessageReaction", {
            "chat_id": chat_id,
            "message_id": message_id,
            "reaction": [{"type": "emoji", "emoji": emoji}],
        })

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> Any:
        body: dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            body["text"] = text
        return await self._call("answerCallbackQuery", body)

    async def get_updates(self, offset: Optional[int] = None, timeout: int = POLL_TIMEOUT_S,
                          limit: int = 100) -> list[dict[str, Any]]:
        body: dict[str, Any] = {"timeout": timeout, "limit": limit}
        if offset is not None:
            body["offset"] = offset
        result = await self._call("getUpdates", body)
        return result if isinstance(result, list) else []

    async def drop_pending_updates(self) -> int:
        """Confirm and discard updates that arrived while the relay was offline."""
        dropped = 0
        offset: Optional[int] = None
        while True:
            updates = await self.get_updates(offset=offset, timeout=0)
            if not updates:
                return dropped
            dropped += len(updates)
            offset = updates[-1]["update_id"] + 1

    async def file_url(self, file_id: str) -> str:
        result = await self._call("getFile", {"file_id": file_id})
        if not isinstance(result, dict) or not result.get("file_path"):
            raise TransportError(f"getFile returned no path for {file_id}")
        return f"{self._api_url}/file/bot{self._token}/{result['file_path']}"

    async def close(self) -> None:
        await self._client.aclose()
