"""
Relay bot — routes chat commands, prompts and button presses to the
session core, and long-polls the chat transport.
"""

import asyncio
import logging
import os
import re
from datetime import datetime
from typing import Any, Optional

from copilot_relay.assistant import ClientFactory
from copilot_relay.config import Settings
from copilot_relay.directories import DirectoryResolver
from copilot_relay.dispatcher import PromptDispatcher, SubmitOutcome
from copilot_relay.errors import (
    DirectorySwitchError,
    InvalidSelectionError,
    NoActiveSessionError,
    SendError,
    SessionCreationError,
    TransportError,
    UserFacingRejection,
)
from copilot_relay.handlers import SessionEventHandler, ToolResultStore
from copilot_relay.lifecycle import SessionLifecycleManager
from copilot_relay.provider import fetch_provider_info, render_provider_info
from copilot_relay.sequencer import EventSequencer
from copilot_relay.state import ChatRegistry
from copilot_relay.status import (
    render_status,
    selection_keyboard,
    session_header,
    session_keyboard,
    welcome_keyboard,
    welcome_text,
)
from copilot_relay.transport.base import Button

logger = logging.getLogger(__name__)

COMMAND_RE = re.compile(r"^/(\w+)(?:@\w+)?(?:\s+(.*))?$", re.DOTALL)
POLL_RETRY_S = 5.0
# Consecutive polling failures after which the owner hears about the recovery
RECOVERY_NOTICE_AFTER = 2

NOT_OWNER_TEXT = "🙇 Sorry, this bot only serves its owner.\nPlease contact the bot administrator if you need access."
NO_DIRECTORIES_TEXT = "No working directories configured. Set DIRECTORY_PATTERNS or edit directories.json."


def parse_selection(raw: Optional[str], count: int, *, one_based: bool = True) -> int:
    """Turn a user-supplied number into a list index, or raise InvalidSelectionError."""
    try:
        index = int((raw or "").strip()) - (1 if one_based else 0)
    except ValueError:
        raise InvalidSelectionError(f"Invalid selection: {raw!r}")
    if index < 0 or index >= count:
        raise InvalidSelectionError(f"Selection out of range: {raw}", {"count": count})
    return index


def chat_label(user: Optional[dict[str, Any]], chat_id: int) -> str:
    if not user:
        return f"chatId: {chat_id}"
    name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p).strip()
    display = name or (f"@{user['username']}" if user.get("username") else "unknown")
    return f"{display} ({chat_id})"


class RelayBot:
    def __init__(
        self,
        settings: Settings,
        transport: Any,
        client_factory: ClientFactory,
        resolver: Optional[DirectoryResolver] = None,
    ):
        self.settings = settings
        self.transport = transport
        self.registry = ChatRegistry(settings.default_model, settings.session_emojis)
        self.dispatcher = PromptDispatcher(self.registry)
        self.results = ToolResultStore()
        self.handler = SessionEventHandler(
            self.registry, transport, self.dispatcher, self.results, settings.models,
        )
        self.sequencer = EventSequencer(self.handler)
        self.lifecycle = SessionLifecycleManager(
            self.registry,
            self.sequencer,
            client_factory,
            destroy_timeout=settings.destroy_timeout,
            stop_timeout=settings.stop_timeout,
            shutdown_grace=settings.shutdown_grace,
        )
        self.resolver = resolver or DirectoryResolver(settings.directory_patterns)
        self._client_factory = client_factory
        self.poll_retry_s = POLL_RETRY_S
        self._stopping = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def models(self) -> list[str]:
        return self.settings.models

    async def _say(self, chat_id: int, text: str, **kwargs: Any) -> Optional[int]:
        header = session_header(self.registry.get(chat_id))
        return await self.transport.send_message(chat_id, f"{header}\n\n{text}", **kwargs)

    # -- updates ---------------------------------------------------------------

    async def handle_update(self, update: dict[str, Any]) -> None:
        try:
            if "callback_query" in update:
                await self.on_callback(update["callback_query"])
            elif "message" in update:
                await self.on_message(update["message"])
        except Exception:
            logger.exception("Error handling update %s", update.get("update_id"))

    async def on_message(self, msg: dict[str, Any]) -> None:
        chat_id = msg["chat"]["id"]
        if not self.settings.is_owner(chat_id):
            logger.info("Rejecting message from non-owner chat %s", chat_id)
            await self._say(chat_id, NOT_OWNER_TEXT)
            return

        text: Optional[str] = msg.get("text") or msg.get("caption")
        if text and text.startswith("/"):
            await self.on_command(msg, text)
            return

        file_id = self._image_file_id(msg)
        if file_id:
            try:
                url = await self.transport.file_url(file_id)
                total = self.dispatcher.attach_image(chat_id, url)
                await self._say(chat_id, f"✅ Image added to the reference context ({total} total).")
            except Exception:
                logger.exception("Error handling image attachment for chat %s", chat_id)
                await self._say(chat_id, "❗ Could not process the image (ignored).")
        if not text:
            return

        try:
            outcome = await self.dispatcher.submit(chat_id, text, message_id=msg.get("message_id"))
        except UserFacingRejection as e:
            await self._say(chat_id, f"⚠️ {e}")
            return
        except SendError as e:
            await self._say(chat_id, f"❗ {e}")
            return
        if outcome is SubmitOutcome.QUEUED:
            await self._say(chat_id, "🕒 Task added to the queue.")

    @staticmethod
    def _image_file_id(msg: dict[str, Any]) -> Optional[str]:
        photos = msg.get("photo")
        if photos:
            # Telegram lists sizes smallest first
            return photos[-1].get("file_id")
        document = msg.get("document") or {}
        if str(document.get("mime_type", "")).startswith("image/"):
            return document.get("file_id")
        return None

    async def on_command(self, msg: dict[str, Any], text: str) -> None:
        chat_id = msg["chat"]["id"]
        match = COMMAND_RE.match(text.strip())
        if not match:
            return
        command, arg = match.group(1).lower(), match.group(2)
        user = msg.get("from")
        logger.debug("Command /%s from chat %s", command, chat_id)
        if command in ("start", "help"):
            await self.send_welcome(chat_id)
        elif command == "dirs":
            await self.show_directories(chat_id)
        elif command == "model":
            if arg and arg.strip():
                try:
                    index = parse_selection(arg, len(self.models))
                except InvalidSelectionError:
                    await self._say(chat_id, "Invalid model number. Use /model to see the list.")
                    return
                await self.select_model(chat_id, index, user)
            else:
                await self.show_models(chat_id)
        elif command in ("status", "st"):
            await self.send_status(chat_id, user)
        elif command == "reset":
            await self.reset(chat_id)
        elif command == "shutdown":
            await self._say(chat_id, "Shut down the relay?", keyboard=[[Button(text="🔌 Shut down", callback_data="shutdown")]])
        else:
            logger.debug("Ignoring unknown command /%s", command)

    async def on_callback(self, query: dict[str, Any]) -> None:
        message = query.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")
        data: str = query.get("data") or ""
        if chat_id is None:
            return
        if not self.settings.is_owner(chat_id):
            await self.transport.answer_callback(query["id"])
            await self._say(chat_id, NOT_OWNER_TEXT)
            return
        user = query.get("from")
        action, _, arg = data.partition(":")

        if action in ("show_result", "show_params"):
            stored = self.results.pop_result(arg) if action == "show_result" else self.results.pop_params(arg)
            if stored is None:
                missing = "Result not ready yet or already shown" if action == "show_result" else "Parameters expired or missing"
                await self.transport.answer_callback(query["id"], missing)
                return
            await self.transport.answer_callback(query["id"])
            title = "📄 Tool result" if action == "show_result" else "📋 Tool parameters"
            await self.transport.send_long_message(
                chat_id,
                f"{session_header(self.registry.get(chat_id))}\n\n{title}: {stored.tool_name}\n```json\n{stored.text}\n```",
                reply_to=stored.message_id,
            )
        elif action == "shutdown":
            await self.transport.answer_callback(query["id"], "Shutting down...")
            await self._say(chat_id, "🔌 Copilot relay is shutting down...")
            self.stop()
        elif action == "cmd_dirs":
            await self.transport.answer_callback(query["id"])
            await self.show_directories(chat_id)
        elif action == "cmd_model":
            await self.transport.answer_callback(query["id"])
            await self.show_models(chat_id)
        elif action == "cmd_status":
            await self.transport.answer_callback(query["id"])
            await self.send_status(chat_id, user)
        elif action == "cmd_help":
            await self.transport.answer_callback(query["id"])
            await self.send_welcome(chat_id)
        elif action == "cmd_reset":
            await self.transport.answer_callback(query["id"])
            await self.reset(chat_id)
        elif action == "set_dir":
            await self._on_set_dir(query, chat_id, arg, user)
        elif action == "set_model":
            try:
                index = parse_selection(arg, len(self.models), one_based=False)
            except InvalidSelectionError:
                await self.transport.answer_callback(query["id"], "Invalid model number")
                return
            await self.transport.answer_callback(query["id"], f"Selected: {self.models[index]}")
            await self.select_model(chat_id, index, user)
        else:
            await self.transport.answer_callback(query["id"])

    async def _on_set_dir(self, query: dict[str, Any], chat_id: int, arg: str, user: Optional[dict[str, Any]]) -> None:
        chat = self.registry.get(chat_id)
        directories = chat.available_dirs if chat and chat.available_dirs else self.resolver.list_directories()
        if chat is not None:
            chat.available_dirs = directories
        if not directories:
            await self.transport.answer_callback(query["id"], "No working directories configured")
            await self._say(chat_id, NO_DIRECTORIES_TEXT)
            return
        try:
            index = parse_selection(arg, len(directories), one_based=False)
        except InvalidSelectionError:
            await self.transport.answer_callback(query["id"], "Invalid directory number")
            return
        directory = directories[index]
        await self.transport.answer_callback(query["id"], f"Selected: {os.path.basename(directory)}")
        await self.select_directory(chat_id, directory, user)

    # -- actions ---------------------------------------------------------------

    async def send_welcome(self, chat_id: int, restart_info: Optional[str] = None) -> None:
        chat = self.registry.get(chat_id)
        await self._say(
            chat_id,
            welcome_text(restart_info),
            keyboard=welcome_keyboard(chat, self.models, self.settings.default_model),
        )

    async def send_status(self, chat_id: int, user: Optional[dict[str, Any]] = None) -> None:
        chat = self.registry.get(chat_id)
        if chat is None:
            await self._say(
                chat_id,
                "No chat state yet. Use /dirs to pick a directory and start a session.",
                keyboard=welcome_keyboard(None, self.models, self.settings.default_model),
            )
            return
        await self._say(chat_id, render_status(chat, chat_label(user, chat_id)), keyboard=session_keyboard(chat, self.models))

    async def show_directories(self, chat_id: int) -> None:
        directories = self.resolver.list_directories()
        if not directories:
            await self._say(chat_id, NO_DIRECTORIES_TEXT)
            return
        chat = self.registry.get_or_create(chat_id)
        chat.available_dirs = directories
        keyboard = selection_keyboard([os.path.basename(d) or d for d in directories], "set_dir")
        await self._say(chat_id, "Choose a working directory:", keyboard=keyboard)

    async def show_models(self, chat_id: int) -> None:
        chat = self.registry.get(chat_id)
        current = chat.model if chat else self.settings.default_model
        listing = "\n".join(
            f"{'✓ ' if m == current else '  '}{i}. {m}" for i, m in enumerate(self.models, start=1)
        )
        keyboard = selection_keyboard([f"{'✓ ' if m == current else ''}{m}" for m in self.models], "set_model")
        await self._say(chat_id, f"Available models:\n{listing}\n\nCurrent: {current}", keyboard=keyboard)

    async def select_directory(self, chat_id: int, directory: str, user: Optional[dict[str, Any]] = None) -> None:
        try:
            await self.lifecycle.start_session(chat_id, directory)
        except UserFacingRejection as e:
            await self._say(chat_id, f"⚠️ {e}")
            return
        except (DirectorySwitchError, SessionCreationError) as e:
            await self._say(chat_id, f"❗ Could not start the Copilot session: {e}")
            return
        await self._say(chat_id, f"✅ Working directory: {directory}")
        await self.send_status(chat_id, user)

    async def select_model(self, chat_id: int, index: int, user: Optional[dict[str, Any]] = None) -> None:
        model = self.models[index]
        is_new = chat_id not in self.registry
        try:
            restarted = await self.lifecycle.switch_model(chat_id, model)
        except UserFacingRejection as e:
            await self._say(chat_id, f"⚠️ {e}")
            return
        except (DirectorySwitchError, SessionCreationError) as e:
            await self._say(chat_id, f"❗ Switching model failed: {e}")
            return
        if restarted:
            chat = self.registry.get(chat_id)
            if chat is None:
                raise NoActiveSessionError()
            await self._say(chat_id, f"✅ Model switched to {model}\nSession restarted.", keyboard=session_keyboard(chat, self.models))
        elif is_new:
            await self._say(chat_id, f"✅ Model set to {model}\nUse /dirs to pick a working directory and start a session.")
        else:
            await self._say(chat_id, f"✅ Model set to {model}")
        await self.send_status(chat_id, user)

    async def reset(self, chat_id: int) -> None:
        chat = self.registry.get(chat_id)
        if chat is None or not (chat.has_session or chat.resetting):
            await self.send_welcome(chat_id)
            return
        await self._say(chat_id, "⚙️ Restarting the Copilot session...")
        try:
            chat = await self.lifecycle.reset_session(chat_id)
        except UserFacingRejection as e:
            await self._say(chat_id, f"⚠️ {e}")
            return
        except (DirectorySwitchError, SessionCreationError) as e:
            await self._say(chat_id, f"❗ Restart failed: {e}")
            return
        keyboard = [*welcome_keyboard(chat, self.models, chat.model), [Button(text="🔄 Restart", callback_data="cmd_reset")]]
        await self._say(chat_id, "✅ Session restarted.", keyboard=keyboard)

    # -- polling -----------------------------------------------------------------

    def stop(self) -> None:
        self._stopping.set()

    def _spawn(self, update: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self.handle_update(update))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def announce_provider(self) -> None:
        """Log the provider summary, refresh the model catalogue and tell the owner."""
        try:
            info = await fetch_provider_info(self._client_factory)
        except SessionCreationError as e:
            logger.warning("Could not query provider info: %s", e)
            return
        if info.is_empty:
            logger.debug("Assistant client reports no provider info")
            return
        if info.models:
            self.settings.models[:] = info.model_ids
            logger.info("Model catalogue refreshed: %d models", len(info.models))
        text = render_provider_info(info)
        logger.info("Provider info:\n%s", text)
        if self.settings.owner_chat_id is not None:
            try:
                await self._say(self.settings.owner_chat_id, text)
            except TransportError as e:
                logger.warning("Failed to send provider info to owner: %s", e)

    async def _notify_recovered(self, failures: int) -> None:
        logger.info("Polling recovered after %d failed attempts", failures)
        if self.settings.owner_chat_id is None:
            return
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            await self._say(
                self.settings.owner_chat_id,
                f"🔄 Connection restored ({now}) after {failures} failed polls.\nThe relay is listening again.",
            )
        except TransportError as e:
            logger.warning("Failed to notify owner about recovery: %s", e)

    async def run(self) -> None:
        """Poll for updates until stop() is called, then shut every session down."""
        self.sequencer.bind_loop(asyncio.get_running_loop())
        try:
            dropped = await self.transport.drop_pending_updates()
            if dropped:
                logger.info("Dropped %d pending updates on startup", dropped)
        except TransportError as e:
            logger.warning("Failed to clear pending updates (continuing): %s", e)

        if self.settings.owner_chat_id is not None:
            try:
                await self.send_welcome(self.settings.owner_chat_id, datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
            except TransportError as e:
                logger.warning("Failed to greet owner: %s", e)
        await self.announce_provider()

        logger.info("Listening for chat updates")
        offset: Optional[int] = None
        failures = 0
        stop_wait = asyncio.ensure_future(self._stopping.wait())
        try:
            while not self._stopping.is_set():
                poll = asyncio.ensure_future(self.transport.get_updates(offset=offset))
                await asyncio.wait({poll, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if not poll.done():
                    poll.cancel()
                    break
                try:
                    updates = poll.result()
                except TransportError as e:
                    failures += 1
                    logger.warning("Polling failed (%d in a row), retrying in %ss: %s", failures, self.poll_retry_s, e)
                    try:
                        await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_retry_s)
                    except asyncio.TimeoutError:
                        pass
                    continue
                if failures >= RECOVERY_NOTICE_AFTER:
                    await self._notify_recovered(failures)
                failures = 0
                for update in updates:
                    offset = update["update_id"] + 1
                    self._spawn(update)
        finally:
            stop_wait.cancel()
            await self.shutdown()

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.lifecycle.shutdown()
        logger.info("Shutdown complete")
