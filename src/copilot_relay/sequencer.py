"""
Per-chat event sequencer.

Assistant callbacks may fire at any time (and from any thread); each event
is appended to its chat's queue and a single drain task per chat awaits
the handler for one event before starting the next.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[int, Any, int], Awaitable[None]]


class EventSequencer:
    def __init__(self, handler: EventHandler, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._handler = handler
        self._loop = loop
        self._queues: dict[int, deque[tuple[Any, int]]] = {}
        self._draining: set[int] = set()
        self._tasks: dict[int, asyncio.Task[None]] = {}

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def enqueue(self, chat_id: int, event: Any, generation: int = 0) -> None:
        """Queue an event for a chat and start draining if nobody is."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is None or (self._loop is not None and running is not self._loop):
            if self._loop is None:
                raise RuntimeError("EventSequencer has no event loop to hand events to")
            self._loop.call_soon_threadsafe(self._enqueue, chat_id, event, generation)
            return
        if self._loop is None:
            self._loop = running
        self._enqueue(chat_id, event, generation)

    def _enqueue(self, chat_id: int, event: Any, generation: int) -> None:
        queue = self._queues.setdefault(chat_id, deque())
        queue.append((event, generation))
        logger.debug("Event queued for chat %s (pending=%d)", chat_id, len(queue))
        if chat_id not in self._draining:
            self._draining.add(chat_id)
            self._tasks[chat_id] = asyncio.get_running_loop().create_task(self._drain(chat_id))

    async def _drain(self, chat_id: int) -> None:
        queue = self._queues.setdefault(chat_id, deque())
        try:
            while queue:
                event, generation = queue.popleft()
                try:
                    await self._handler(chat_id, event, generation)
                except Exception:
                    logger.exception("Error handling assistant event for chat %s", chat_id)
        finally:
            self._draining.discard(chat_id)
            self._tasks.pop(chat_id, None)

    def pending(self, chat_id: int) -> int:
        return len(self._queues.get(chat_id, ()))

    def is_draining(self, chat_id: int) -> bool:
        return chat_id in self._draining

    def reset(self, chat_id: int) -> None:
        """Drop events that have not been handled yet.

        A drain that is mid-event finishes that event and then stops, since
        its queue is now empty.
        """
        queue = self._queues.get(chat_id)
        if queue:
            logger.debug("Dropping %d pending events for chat %s", len(queue), chat_id)
            queue.clear()

    async def wait_idle(self, chat_id: Optional[int] = None) -> None:
        """Wait until the given chat (or every chat) has nothing left to drain."""
        while True:
            if chat_id is None:
                tasks = list(self._tasks.values())
            else:
                task = self._tasks.get(chat_id)
                tasks = [task] if task is not None else []
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for queue in self._queues.values():
            queue.clear()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
