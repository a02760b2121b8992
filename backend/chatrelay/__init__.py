"""ChatRelay - Telegram relay to an LLM chat completion service."""

__version__ = "1.0.0"
