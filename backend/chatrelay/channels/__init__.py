"""Channels module - chat platform clients."""

from .base import ChatTransport, TelegramAPIError
from .telegram import TelegramBot

__all__ = ['ChatTransport', 'TelegramAPIError', 'TelegramBot']
