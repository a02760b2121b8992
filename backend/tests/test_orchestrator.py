"""
Tests for the conversation orchestrator, driven end to end against a real
SQLite store with fake transport and LLM.
"""

import asyncio

import pytest
from sqlalchemy import text

from chatrelay.core.orchestrator import (
    CORRUPTED_REPLY,
    NON_TEXT_REPLY,
    REGISTERED_REPLY,
    REJECTED_REPLY,
    ConversationOrchestrator,
    SessionStateError,
)
from chatrelay.llm.base import CompletionError, LLMMessage
from chatrelay.session.state import Active, AwaitingCredential, ModelVersion, Turn

from conftest import FakeLLM, VALID_KEY

CHAT = 7


def _orchestrator(store, transport, llm, interval=10.0):
    return ConversationOrchestrator(store, llm, transport, typing_interval=interval)


async def _register(orchestrator, chat_id=CHAT):
    await orchestrator.handle_message(chat_id, VALID_KEY)


class TestRegistration:

    @pytest.mark.asyncio
    async def test_valid_key_activates_chat(self, store, registry, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        await _register(orchestrator)

        assert transport.last_text(CHAT) == REGISTERED_REPLY
        assert await store.get(CHAT) == Active()

    @pytest.mark.asyncio
    async def test_invalid_key_keeps_chat_unregistered(self, store, registry, transport):
        llm = FakeLLM()
        orchestrator = _orchestrator(store, transport, llm)
        await orchestrator.handle_message(CHAT, "definitely-not-a-key")

        assert transport.last_text(CHAT) == REJECTED_REPLY
        assert await store.get(CHAT) == AwaitingCredential()
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_retry_after_rejection(self, store, registry, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        await orchestrator.handle_message(CHAT, "wrong")
        await _register(orchestrator)

        assert [t for _, t in transport.sent] == [REJECTED_REPLY, REGISTERED_REPLY]

    @pytest.mark.asyncio
    async def test_command_before_registration_is_a_candidate(self, store, registry, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        await orchestrator.handle_message(CHAT, "/reset")
        assert transport.last_text(CHAT) == REJECTED_REPLY

    @pytest.mark.asyncio
    async def test_non_text_message(self, store, transport):
        llm = FakeLLM()
        orchestrator = _orchestrator(store, transport, llm)
        await orchestrator.handle_message(CHAT, None)

        assert transport.sent == [(CHAT, NON_TEXT_REPLY)]
        assert await store.get(CHAT) == AwaitingCredential()


class TestConversation:

    @pytest.mark.asyncio
    async def test_history_is_sent_as_context(self, store, registry, transport):
        llm = FakeLLM(replies=["Hello!", "You said hi."])
        orchestrator = _orchestrator(store, transport, llm)
        await _register(orchestrator)

        await orchestrator.handle_message(CHAT, "hi")
        await orchestrator.handle_message(CHAT, "what did I say?")

        assert transport.last_text(CHAT) == "You said hi."
        assert llm.calls[1]["messages"] == [
            LLMMessage.text("user", "hi"),
            LLMMessage.text("assistant", "Hello!"),
            LLMMessage.text("user", "what did I say?"),
        ]
        session = await store.get(CHAT)
        assert session.history == (
            Turn.user("hi"), Turn.assistant("Hello!"),
            Turn.user("what did I say?"), Turn.assistant("You said hi."),
        )

    @pytest.mark.asyncio
    async def test_default_model(self, store, registry, transport):
        llm = FakeLLM(replies=["ok"])
        orchestrator = _orchestrator(store, transport, llm)
        await _register(orchestrator)
        await orchestrator.handle_message(CHAT, "hi")

        assert llm.calls[0]["model"] == "gpt-3.5-turbo"

    @pytest.mark.asyncio
    async def test_model_switch_applies_to_next_request(self, store, registry, transport):
        llm = FakeLLM(replies=["ok"])
        orchestrator = _orchestrator(store, transport, llm)
        await _register(orchestrator)

        await orchestrator.handle_message(CHAT, "/gpt4")
        assert transport.last_text(CHAT) == "🕹GPT-4"
        await orchestrator.handle_message(CHAT, "hi")

        assert llm.calls[0]["model"] == "gpt-4"
        assert (await store.get(CHAT)).version is ModelVersion.GPT4

    @pytest.mark.asyncio
    async def test_failed_request_leaves_history_untouched(self, store, registry, transport):
        llm = FakeLLM(error=CompletionError("429 Too Many Requests"))
        orchestrator = _orchestrator(store, transport, llm)
        await _register(orchestrator)
        await store.put(CHAT, Active(history=(Turn.user("a"), Turn.assistant("b"))))

        with pytest.raises(CompletionError):
            await orchestrator.handle_message(CHAT, "hi")

        assert transport.last_text(CHAT) == (
            "Error while request: 429 Too Many Requests, You can try call /reset or /tail"
        )
        assert (await store.get(CHAT)).history == (Turn.user("a"), Turn.assistant("b"))

    @pytest.mark.asyncio
    async def test_typing_shown_during_request_only(self, store, registry, transport):
        llm = FakeLLM(replies=["slow answer"], delay=0.05)
        orchestrator = _orchestrator(store, transport, llm, interval=0.01)
        await _register(orchestrator)

        await orchestrator.handle_message(CHAT, "hi")
        count = len(transport.typing)
        assert count >= 2
        await asyncio.sleep(0.05)
        assert len(transport.typing) == count

    @pytest.mark.asyncio
    async def test_typing_stops_after_failure(self, store, registry, transport):
        llm = FakeLLM(error=CompletionError("timeout"), delay=0.03)
        orchestrator = _orchestrator(store, transport, llm, interval=0.01)
        await _register(orchestrator)

        with pytest.raises(CompletionError):
            await orchestrator.handle_message(CHAT, "hi")
        count = len(transport.typing)
        await asyncio.sleep(0.05)
        assert len(transport.typing) == count

    @pytest.mark.asyncio
    async def test_converse_requires_active_session(self, store, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        with pytest.raises(SessionStateError):
            await orchestrator.converse(CHAT, AwaitingCredential(), "hi")


class TestCommands:

    @pytest.mark.asyncio
    async def test_reset_clears_history_keeps_model(self, store, registry, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        await _register(orchestrator)
        await store.put(CHAT, Active(history=(Turn.user("a"), Turn.assistant("b")),
                                     version=ModelVersion.GPT4))

        await orchestrator.handle_message(CHAT, "/reset")

        assert transport.last_text(CHAT) == "✖️ History Reseted"
        assert await store.get(CHAT) == Active(history=(), version=ModelVersion.GPT4)

    @pytest.mark.asyncio
    async def test_tail_drops_oldest_turn(self, store, registry, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        await _register(orchestrator)
        await store.put(CHAT, Active(history=(Turn.user("a"), Turn.assistant("b"))))

        await orchestrator.handle_message(CHAT, "/tail")

        assert transport.last_text(CHAT) == "✖️ Take Tail"
        assert (await store.get(CHAT)).history == (Turn.assistant("b"),)

    @pytest.mark.asyncio
    async def test_commands_skip_llm_and_typing(self, store, registry, transport):
        llm = FakeLLM()
        orchestrator = _orchestrator(store, transport, llm, interval=0.01)
        await _register(orchestrator)

        for command in ("/reset", "/tail", "/gpt3", "/gpt4"):
            await orchestrator.handle_message(CHAT, command)

        assert llm.calls == []
        assert transport.typing == []


class TestCorruptedHistory:

    async def _corrupt(self, store):
        async with store.engine.begin() as conn:
            await conn.execute(
                text('UPDATE "users" SET "history" = \'[{"role": 1\' WHERE "chat_id" = :c'),
                {"c": CHAT},
            )

    @pytest.mark.asyncio
    async def test_ordinary_message_refused(self, store, registry, transport):
        llm = FakeLLM(replies=["never"])
        orchestrator = _orchestrator(store, transport, llm)
        await _register(orchestrator)
        await self._corrupt(store)

        await orchestrator.handle_message(CHAT, "hi")

        assert transport.last_text(CHAT) == CORRUPTED_REPLY
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_reset_recovers(self, store, registry, transport):
        orchestrator = _orchestrator(store, transport, FakeLLM())
        await _register(orchestrator)
        await orchestrator.handle_message(CHAT, "/gpt4")
        await self._corrupt(store)

        await orchestrator.handle_message(CHAT, "/reset")

        assert transport.last_text(CHAT) == "✖️ History Reseted"
        assert await store.get(CHAT) == Active(history=(), version=ModelVersion.GPT4)


class TestIsolation:

    @pytest.mark.asyncio
    async def test_chats_keep_separate_histories(self, store, registry, transport):
        llm = FakeLLM(replies=["one", "two"])
        orchestrator = _orchestrator(store, transport, llm)
        await _register(orchestrator, 1)
        await _register(orchestrator, 2)

        await orchestrator.handle_message(1, "from chat one")
        await orchestrator.handle_message(2, "from chat two")

        assert (await store.get(1)).history == (Turn.user("from chat one"), Turn.assistant("one"))
        assert (await store.get(2)).history == (Turn.user("from chat two"), Turn.assistant("two"))
        assert transport.last_text(1) == "one"
        assert transport.last_text(2) == "two"
