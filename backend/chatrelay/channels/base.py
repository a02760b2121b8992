"""
Chat Transport - what the conversation core needs from a chat platform.
"""

from abc import ABC, abstractmethod


class TelegramAPIError(Exception):
    """The chat platform rejected a call or could not be reached."""


class ChatTransport(ABC):
    """Outbound side of a chat platform."""

    @abstractmethod
    async def send_text(self, chat_id: int, text: str) -> None:
        """Send a plain text message to a chat."""
        pass

    @abstractmethod
    async def send_typing(self, chat_id: int) -> None:
        """Show the "typing..." indicator in a chat."""
        pass
