"""
Shared test fixtures and configuration.
"""

import asyncio
import os
from typing import List, Optional, Tuple

import pytest

# Set test environment variables before importing chatrelay modules
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_API_REQUESTS", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:////tmp/chatrelay_test_data/chatrelay.db")

from chatrelay.channels.base import ChatTransport  # noqa: E402
from chatrelay.llm.base import LLMProvider, LLMResponse  # noqa: E402
from chatrelay.storage.credentials import CredentialRegistry  # noqa: E402
from chatrelay.storage.session_store import SessionStore  # noqa: E402

VALID_KEY = "OoNhM6l1aCUFRoCjb8LUNYqJ2IVrVVka"


class FakeTransport(ChatTransport):
    """Records everything the core sends to a chat."""

    def __init__(self, fail_typing: bool = False):
        self.sent: List[Tuple[int, str]] = []
        self.typing: List[int] = []
        self.fail_typing = fail_typing

    async def send_text(self, chat_id: int, text: str) -> None:
        self.sent.append((chat_id, text))

    async def send_typing(self, chat_id: int) -> None:
        self.typing.append(chat_id)
        if self.fail_typing:
            raise RuntimeError("typing failed")

    def last_text(self, chat_id: Optional[int] = None) -> Optional[str]:
        texts = [t for c, t in self.sent if chat_id is None or c == chat_id]
        return texts[-1] if texts else None


class FakeLLM(LLMProvider):
    """Scripted completion service recording every request."""

    provider_name = "fake"

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        super().__init__(api_key="fake", model="gpt-3.5-turbo")
        self.replies = list(replies or [])
        self.error = error
        self.delay = delay
        self.calls = []

    async def chat_completion(self, messages, model=None, temperature=None, max_tokens=None):
        self.calls.append({"messages": list(messages), "model": model})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.replies.pop(0), model=model or self.model)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'chatrelay.db'}"


@pytest.fixture
async def store(database_url):
    session_store = SessionStore.from_url(database_url)
    await session_store.initialize()
    yield session_store
    await session_store.close()


@pytest.fixture
async def registry(store):
    credentials = CredentialRegistry(store.engine)
    await credentials.issue(VALID_KEY)
    return credentials


@pytest.fixture
def transport():
    return FakeTransport()
