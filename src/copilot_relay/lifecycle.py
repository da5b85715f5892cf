"""
Session lifecycle — create, replace, reset and tear down assistant
sessions for a chat.

The working directory is handed to the client factory (``cwd=``) rather
than switched process-wide, so chats in different directories do not
interfere. Lifecycle operations on the same chat are serialized.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from copilot_relay.assistant import ClientFactory, abort_session
from copilot_relay.errors import (
    DirectorySwitchError,
    NoActiveSessionError,
    ResetInProgressError,
    SessionCreationError,
    is_disposed_connection_error,
)
from copilot_relay.sequencer import EventSequencer
from copilot_relay.state import ChatRegistry, ChatSession

logger = logging.getLogger(__name__)

DEFAULT_DESTROY_TIMEOUT_S = 5.0
DEFAULT_STOP_TIMEOUT_S = 3.0
DEFAULT_SHUTDOWN_GRACE_S = 10.0


class SessionLifecycleManager:
    def __init__(
        self,
        registry: ChatRegistry,
        sequencer: EventSequencer,
        client_factory: ClientFactory,
        *,
        destroy_timeout: float = DEFAULT_DESTROY_TIMEOUT_S,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT_S,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE_S,
    ):
        self._registry = registry
        self._sequencer = sequencer
        self._client_factory = client_factory
        self._destroy_timeout = destroy_timeout
        self._stop_timeout = stop_timeout
        self._shutdown_grace = shutdown_grace
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    async def start_session(self, chat_id: int, directory: str, model: Optional[str] = None) -> ChatSession:
        """Replace the chat's assistant session with a new one in `directory`.

        Raises ResetInProgressError while the chat is resetting,
        DirectorySwitchError if the directory is unusable and
        SessionCreationError if the assistant cannot be started. In the
        last two cases the previous session is gone.
        """
        chat = self._registry.get_or_create(chat_id, model)
        if chat.resetting:
            raise ResetInProgressError()
        async with self._lock(chat_id):
            return await self._start(chat, directory, model)

    async def reset_session(self, chat_id: int) -> ChatSession:
        """Drop queued prompts and restart the session in the same directory and model.

        The chat's lifecycle lock is held from begin_reset to end_reset, so
        no other start can attach a session while the chat is resetting.
        """
        self._resettable(chat_id)
        async with self._lock(chat_id):
            chat = self._resettable(chat_id)
            directory, model = chat.directory, chat.model
            if directory is None:
                raise NoActiveSessionError()
            logger.info("Resetting session for chat %s (dir=%s, model=%s)", chat_id, directory, model)
            chat.begin_reset()
            self._sequencer.reset(chat_id)
            try:
                try:
                    await abort_session(chat.session)
                except Exception as e:
                    self._log_teardown_error(e, "aborting in-flight turn", chat_id)
                return await self._start(chat, directory, model)
            finally:
                chat.end_reset()

    def _resettable(self, chat_id: int) -> ChatSession:
        chat = self._registry.get(chat_id)
        if chat is not None and chat.resetting:
            raise ResetInProgressError()
        if chat is None or not chat.has_session:
            raise NoActiveSessionError()
        return chat

    async def switch_model(self, chat_id: int, model: str) -> bool:
        """Select a model; an active session is restarted with it. Returns True on restart."""
        chat = self._registry.get(chat_id)
        if chat is None:
            self._registry.get_or_create(chat_id, model)
            return False
        if chat.resetting:
            raise ResetInProgressError()
        chat.switch_model(model)
        logger.info("Chat %s switched model to %s", chat_id, model)
        directory = chat.directory
        if directory is None or not chat.has_session:
            return False
        await self.start_session(chat_id, directory, model)
        return True

    async def _start(self, chat: ChatSession, directory: str, model: Optional[str]) -> ChatSession:
        if model:
            chat.model = model
        logger.debug("Starting session for chat %s in %s with model %s", chat.chat_id, directory, chat.model)

        await self._teardown(chat)
        self._sequencer.reset(chat.chat_id)
        cwd = self._check_directory(directory)

        client: Any = None
        try:
            client = self._client_factory(cwd=cwd)
            await client.start()
            session = await client.create_session(model=chat.model)
        except Exception as e:
            logger.error("Session creation failed for chat %s: %s", chat.chat_id, e)
            if client is not None:
                await self._stop_client(client, chat.chat_id)
            raise SessionCreationError(f"Failed to start assistant session: {e}", {"directory": cwd}) from e

        generation = chat.attach(client, session, cwd, emoji=self._registry.pick_emoji(exclude=chat.chat_id))
        try:
            chat.unsubscribe = session.on(self._event_callback(chat.chat_id, generation))
        except Exception as e:
            logger.error("Registering event handler failed for chat %s: %s", chat.chat_id, e)
            await self._teardown(chat)
            raise SessionCreationError(f"Failed to subscribe to assistant events: {e}") from e

        logger.info("Session ready for chat %s in %s (model=%s)", chat.chat_id, cwd, chat.model)
        return chat

    def _event_callback(self, chat_id: int, generation: int) -> Callable[[Any], None]:
        def on_event(event: Any) -> None:
            self._sequencer.enqueue(chat_id, event, generation)
        return on_event

    @staticmethod
    def _check_directory(directory: str) -> str:
        path = Path(directory).expanduser()
        try:
            resolved = path.resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise DirectorySwitchError(directory, str(e))
        if not resolved.is_dir():
            raise DirectorySwitchError(directory, "not a directory")
        return str(resolved)

    async def _teardown(self, chat: ChatSession, *, bounded: bool = False) -> None:
        session, client, unsubscribe = chat.session, chat.client, chat.unsubscribe
        chat.detach()
        if callable(unsubscribe):
            try:
                unsubscribe()
            except Exception as e:
                logger.debug("Unsubscribing events for chat %s failed: %s", chat.chat_id, e)
        if session is not None:
            await self._destroy_session(session, chat.chat_id, self._destroy_timeout if bounded else None)
        if client is not None:
            await self._stop_client(client, chat.chat_id, self._stop_timeout if bounded else None)

    async def _destroy_session(self, session: Any, chat_id: int, timeout: Optional[float] = None) -> None:
        try:
            await asyncio.wait_for(session.destroy(), timeout=timeout)
            logger.debug("Session destroyed for chat %s", chat_id)
        except asyncio.TimeoutError:
            logger.warning("Destroying session for chat %s timed out after %ss", chat_id, timeout)
        except Exception as e:
            self._log_teardown_error(e, "destroying session", chat_id)

    async def _stop_client(self, client: Any, chat_id: int, timeout: Optional[float] = None) -> None:
        try:
            await asyncio.wait_for(client.stop(), timeout=timeout)
            logger.debug("Client stopped for chat %s", chat_id)
        except asyncio.TimeoutError:
            logger.warning("Stopping client for chat %s timed out after %ss", chat_id, timeout)
        except Exception as e:
            self._log_teardown_error(e, "stopping client", chat_id)

    @staticmethod
    def _log_teardown_error(err: BaseException, action: str, chat_id: int) -> None:
        if is_disposed_connection_error(err):
            logger.debug("Ignored disposed connection error while %s for chat %s: %s", action, chat_id, err)
        else:
            logger.warning("Error while %s for chat %s: %s", action, chat_id, err)

    async def shutdown(self) -> None:
        """Tear down every session within the configured grace period."""
        chats = [chat for chat in self._registry if chat.session is not None or chat.client is not None]
        logger.info("Shutting down %d assistant session(s)", len(chats))
        await self._sequencer.close()
        if not chats:
            return
        tasks = [asyncio.ensure_future(self._teardown(chat, bounded=True)) for chat in chats]
        done, pending = await asyncio.wait(tasks, timeout=self._shutdown_grace)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("%d session(s) did not shut down within %ss", len(pending), self._shutdown_grace)
