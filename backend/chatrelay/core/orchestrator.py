"""
Conversation Orchestrator - handles one inbound message for one chat.

Loads the chat's session, routes on its phase, and persists the result:
- AwaitingCredential: the text is an access key; register the chat.
- Active + command: apply it and acknowledge.
- Active + anything else: relay to the LLM with the history as context.
"""

import logging
from typing import Optional

from ..channels.base import ChatTransport
from ..llm.base import CompletionError, LLMMessage, LLMProvider
from ..session.commands import ACKNOWLEDGEMENTS, Command, apply_command, parse_command
from ..session.state import (
    Active,
    AwaitingCredential,
    ModelVersion,
    PendingVerification,
    Session,
    append_exchange,
    submit_candidate,
)
from ..storage.errors import CredentialRejectedError, HistoryCorruptedError
from ..storage.session_store import SessionStore
from .liveness import typing_indicator
from .logging_config import chat_logger

logger = logging.getLogger(__name__)

NON_TEXT_REPLY = "Please send a text message."
REGISTERED_REPLY = "Success! You can start conversation!"
REJECTED_REPLY = "API Key not working, please try again!"
CORRUPTED_REPLY = "Your conversation history could not be read. Send /reset to start over."


class SessionStateError(Exception):
    """A handler was reached with a session in the wrong phase."""


class ConversationOrchestrator:
    """
    Drives a chat through registration and conversation.

    The store, LLM provider and transport are shared by every chat; the
    orchestrator keeps no per-chat state of its own.
    """

    def __init__(self, store: SessionStore, llm_provider: LLMProvider,
                 transport: ChatTransport, typing_interval: float = 10.0):
        """
        Args:
            store: Session storage
            llm_provider: Completion service client
            transport: Chat platform for replies and typing indicators
            typing_interval: Seconds between typing indicators
        """
        self.store = store
        self.llm_provider = llm_provider
        self.transport = transport
        self.typing_interval = typing_interval

    async def handle_message(self, chat_id: int, text: Optional[str]) -> None:
        """
        Process one inbound message.

        Args:
            chat_id: Chat the message came from
            text: Message text, None for non-text messages

        Raises:
            CompletionError: If the LLM call failed (the user has been told)
            StorageError: If the session could not be loaded or saved
        """
        log = chat_logger(logger, chat_id)

        if text is None:
            log.info("Ignoring non-text message")
            await self.transport.send_text(chat_id, NON_TEXT_REPLY)
            return

        try:
            session = await self.store.get(chat_id)
        except HistoryCorruptedError as e:
            await self._handle_corrupted(chat_id, text, e)
            return

        if isinstance(session, (AwaitingCredential, PendingVerification)):
            await self.register(chat_id, session, text)
        elif isinstance(session, Active):
            command = parse_command(text)
            if command is not None:
                await self.run_command(chat_id, session, command)
            else:
                await self.converse(chat_id, session, text)
        else:
            raise SessionStateError(f"Unknown session phase: {type(session).__name__}")

    async def register(self, chat_id: int, session: Session, candidate: str) -> bool:
        """
        Treat the text as an access key and try to register the chat.

        Returns:
            True if the chat is now Active
        """
        log = chat_logger(logger, chat_id)
        try:
            await self.store.put(chat_id, submit_candidate(session, candidate))
        except CredentialRejectedError as e:
            log.warning(f"Registration rejected: {e}")
            await self.transport.send_text(chat_id, REJECTED_REPLY)
            return False

        log.info("Registration succeeded")
        await self.transport.send_text(chat_id, REGISTERED_REPLY)
        return True

    async def run_command(self, chat_id: int, session: Active, command: Command) -> Active:
        updated, acknowledgement = apply_command(session, command)
        await self.store.put(chat_id, updated)
        chat_logger(logger, chat_id).info(f"Applied command {command.value}")
        await self.transport.send_text(chat_id, acknowledgement)
        return updated

    async def converse(self, chat_id: int, session: Session, text: str) -> Active:
        """
        Relay a message to the LLM and store the exchange.

        History is only written after a successful reply; a failed request
        leaves the stored session untouched.
        """
        if not isinstance(session, Active):
            raise SessionStateError(
                f"Conversation requires an Active session, got {type(session).__name__}"
            )

        log = chat_logger(logger, chat_id, model=session.version.value)
        log.debug(f"New message in conversation ({len(session.history)} turns of history)")

        messages = [LLMMessage.text(turn.role, turn.content) for turn in session.history]
        messages.append(LLMMessage.text("user", text))

        try:
            async with typing_indicator(self.transport, chat_id, self.typing_interval):
                response = await self.llm_provider.chat_completion(
                    messages, model=session.version.value
                )
        except CompletionError as e:
            log.warning(f"Completion failed: {e}")
            await self.transport.send_text(
                chat_id, f"Error while request: {e}, You can try call /reset or /tail"
            )
            raise

        updated = append_exchange(session, text, response.content)
        await self.store.put(chat_id, updated)
        await self.transport.send_text(chat_id, response.content)
        log.info(f"Conversation turn stored ({len(updated.history)} turns)")
        return updated

    async def _handle_corrupted(self, chat_id: int, text: str, error: HistoryCorruptedError) -> None:
        # Only an explicit /reset may overwrite a corrupted history
        log = chat_logger(logger, chat_id)
        if parse_command(text) is Command.RESET:
            reset = Active(history=(), version=ModelVersion.from_stored(error.model_version))
            await self.store.put(chat_id, reset)
            log.info("Corrupted history reset by user")
            await self.transport.send_text(chat_id, ACKNOWLEDGEMENTS[Command.RESET])
            return

        log.warning("Message refused: stored history is corrupted")
        await self.transport.send_text(chat_id, CORRUPTED_REPLY)
