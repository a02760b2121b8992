"""
Typing indicator kept alive while a completion request is pending.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..channels.base import ChatTransport

logger = logging.getLogger(__name__)


async def _keep_typing(transport: ChatTransport, chat_id: int, interval: float) -> None:
    while True:
        try:
            await transport.send_typing(chat_id)
        except Exception as e:
            # The indicator is cosmetic; the request it decorates carries on
            logger.warning(f"Typing indicator failed for chat {chat_id}: {e}")
        await asyncio.sleep(interval)


@asynccontextmanager
async def typing_indicator(transport: ChatTransport, chat_id: int,
                           interval: float = 10.0) -> AsyncIterator[asyncio.Task]:
    """
    Show "typing..." in a chat for as long as the block runs.

    The indicator task is cancelled and awaited on every exit path, so no
    indicator is sent once the block has finished.

    Usage:
        async with typing_indicator(bot, chat_id):
            reply = await llm.chat_completion(messages)
    """
    task = asyncio.create_task(_keep_typing(transport, chat_id, interval))
    try:
        yield task
    finally:
        task.cancel()
        # asyncio.wait neither raises the task's CancelledError nor hides our own
        await asyncio.wait({task})
