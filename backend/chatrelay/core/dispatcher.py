"""
Update Dispatcher - runs every inbound event as its own task.

Events for the same chat are handled one at a time, in the order they were
submitted; different chats run concurrently. A failure while handling one event is logged (and reported to the chat when
possible) but never affects other chats or stops the dispatcher.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set

from ..channels.base import ChatTransport, TelegramAPIError
from ..channels.telegram import TelegramBot
from ..llm.base import CompletionError
from ..storage.session_store import SessionStore
from .orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)

INTERNAL_ERROR_REPLY = "Internal error, please try again later."
POLLING_RETRY_DELAY = 5.0


class Dispatcher:
    """Routes parsed transport events to the orchestrator."""

    def __init__(self, orchestrator: ConversationOrchestrator,
                 store: SessionStore, transport: ChatTransport):
        self.orchestrator = orchestrator
        self.store = store
        self.transport = transport
        self._tasks: Set[asyncio.Task] = set()
        self._polling_task: Optional[asyncio.Task] = None
        # chat_id -> (lock, number of events holding or waiting for it)
        self._chat_locks: Dict[int, asyncio.Lock] = {}
        self._chat_waiters: Dict[int, int] = {}

    @property
    def pending(self) -> int:
        """Number of events still being handled."""
        return len(self._tasks)

    @asynccontextmanager
    async def _chat_turn(self, chat_id: Optional[int]) -> AsyncIterator[None]:
        if chat_id is None:
            yield
            return

        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = self._chat_locks[chat_id] = asyncio.Lock()
        self._chat_waiters[chat_id] = self._chat_waiters.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._chat_waiters[chat_id] -= 1
            if self._chat_waiters[chat_id] == 0:
                del self._chat_waiters[chat_id]
                del self._chat_locks[chat_id]

    def submit(self, event: Dict[str, Any]) -> asyncio.Task:
        """
        Schedule an event for handling and return its task.

        Must be called in delivery order: a chat's events acquire its turn in
        the order their tasks start.
        """
        task = asyncio.create_task(self.dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(self, event: Dict[str, Any]) -> None:
        """Handle one event, containing any failure."""
        event_type = event.get("type")
        chat_id = event.get("chat_id")

        async with self._chat_turn(chat_id):
            try:
                if event_type == "message":
                    if chat_id is None:
                        logger.warning(f"Message without chat id: update {event.get('update_id')}")
                        return
                    await self.orchestrator.handle_message(chat_id, event.get("text"))
                elif event_type == "chat_removed":
                    await self.store.delete(chat_id)
                else:
                    logger.debug(f"Ignoring {event_type} update {event.get('update_id')}")
            except CompletionError as e:
                # The user has already been told and offered /reset and /tail
                logger.warning(
                    f"Completion failed for chat {chat_id}: {e}",
                    extra={"extra_fields": {"chat_id": chat_id, "error": str(e)}}
                )
            except Exception as e:
                logger.exception(
                    f"Error processing {event_type} for chat {chat_id}",
                    extra={"extra_fields": {"chat_id": chat_id, "error": str(e)}}
                )
                if event_type == "message" and chat_id is not None:
                    try:
                        await self.transport.send_text(chat_id, INTERNAL_ERROR_REPLY)
                    except Exception:
                        logger.exception(f"Failed to send error message to chat {chat_id}")

    async def run_polling(self, bot: TelegramBot, timeout: int = 30) -> None:
        """
        Long-poll Telegram until cancelled.

        Each update is confirmed (offset advanced) as soon as it is scheduled.
        """
        offset: Optional[int] = None
        logger.info("Polling for Telegram updates")
        while True:
            try:
                updates = await bot.get_updates(offset=offset, timeout=timeout)
            except TelegramAPIError as e:
                logger.warning(f"Polling failed, retrying in {POLLING_RETRY_DELAY}s: {e}")
                await asyncio.sleep(POLLING_RETRY_DELAY)
                continue
            except Exception:
                logger.exception(f"Unexpected polling error, retrying in {POLLING_RETRY_DELAY}s")
                await asyncio.sleep(POLLING_RETRY_DELAY)
                continue

            for update in updates or []:
                update_id = update.get("update_id")
                if update_id is not None:
                    offset = update_id + 1
                try:
                    event = bot.parse_update(update)
                except Exception:
                    logger.exception(f"Skipping unparseable update {update_id}")
                    continue
                self.submit(event)

    def start_polling(self, bot: TelegramBot, timeout: int = 30) -> asyncio.Task:
        self._polling_task = asyncio.create_task(self.run_polling(bot, timeout))
        return self._polling_task

    async def shutdown(self, grace_period: float = 30.0) -> None:
        """Stop polling and wait for in-flight events to finish."""
        if self._polling_task is not None:
            self._polling_task.cancel()
            await asyncio.wait({self._polling_task})
            self._polling_task = None

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight message(s)")
            _, still_running = await asyncio.wait(set(self._tasks), timeout=grace_period)
            for task in still_running:
                task.cancel()
