"""
Session Store - durable mapping from chat id to dialogue state.

Absence of a row is the AwaitingCredential phase; a row is an Active chat.

Writes are last-write-wins per chat: there is no version check, so two
concurrent turns for the same chat can overwrite each other's history. The
transport delivers one chat's messages in order, so this only matters for
duplicate or retried deliveries.
"""

import logging

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..session.state import (
    Active,
    AwaitingCredential,
    ModelVersion,
    PendingVerification,
    Session,
    deserialize_history,
    serialize_history,
)
from .credentials import key_digest
from .database import create_engine_for_url, users
from .errors import CredentialRejectedError, HistoryCorruptedError, StorageError
from .migrations import apply_migrations

logger = logging.getLogger(__name__)

# Inserts only when a matching (hash, prefix) tuple exists, in one statement
_REGISTER_SQL = text(
    """
    INSERT OR REPLACE INTO "users" ("chat_id", "history", "model_version")
    SELECT :chat_id, :history, :model_version
    WHERE EXISTS (
        SELECT 1 FROM "api_keys"
        WHERE "key_hash" = :key_hash AND "key_prefix" = :key_prefix
    )
    """
)


class SessionStore:
    """
    SQLite-backed session storage.

    Safe to share across tasks: every call checks out its own connection and
    commits before returning.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "SessionStore":
        return cls(create_engine_for_url(database_url))

    async def initialize(self) -> None:
        """Bring the schema up to date. Must run before serving requests."""
        applied = await apply_migrations(self.engine)
        if applied:
            logger.info(f"Session store migrated: {len(applied)} migration(s) applied")

    async def close(self) -> None:
        await self.engine.dispose()

    async def get(self, chat_id: int) -> Session:
        """
        Load the session for a chat.

        Returns:
            AwaitingCredential if the chat has no record, otherwise Active

        Raises:
            HistoryCorruptedError: If the stored history cannot be decoded
            StorageError: If the read fails
        """
        stmt = select(users.c.history, users.c.model_version).where(users.c.chat_id == chat_id)
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load session for chat {chat_id}: {e}") from e

        if row is None:
            return AwaitingCredential()

        try:
            history = deserialize_history(row.history)
        except ValueError as e:
            logger.error(
                f"Corrupted history for chat {chat_id}: {e}",
                extra={"extra_fields": {"chat_id": chat_id}},
            )
            raise HistoryCorruptedError(chat_id, row.model_version) from e

        return Active(history=history, version=ModelVersion.from_stored(row.model_version))

    async def put(self, chat_id: int, session: Session) -> None:
        """
        Persist a session.

        A PendingVerification write verifies the candidate key and creates a
        fresh Active record only if it is accepted.

        Raises:
            CredentialRejectedError: If the candidate key is not registered
            StorageError: If the write fails, or an Active write finds no record
        """
        if isinstance(session, AwaitingCredential):
            return
        elif isinstance(session, PendingVerification):
            await self._register(chat_id, session.candidate)
        elif isinstance(session, Active):
            await self._save_active(chat_id, session)
        else:
            raise TypeError(f"Unsupported session type: {type(session).__name__}")

    async def delete(self, chat_id: int) -> None:
        """Remove the chat's record. Deleting a missing record succeeds."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(delete(users).where(users.c.chat_id == chat_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete session for chat {chat_id}: {e}") from e

        if result.rowcount:
            logger.info(f"Deleted session for chat {chat_id}")

    async def _register(self, chat_id: int, candidate: str) -> None:
        try:
            key_hash, key_prefix = key_digest(candidate)
        except ValueError as e:
            raise CredentialRejectedError("Malformed key") from e

        params = {
            "chat_id": chat_id,
            "history": serialize_history(()),
            "model_version": ModelVersion.default().value,
            "key_hash": key_hash,
            "key_prefix": key_prefix,
        }
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(_REGISTER_SQL, params)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to register chat {chat_id}: {e}") from e

        if result.rowcount == 0:
            raise CredentialRejectedError("Key is not registered")
        logger.info(f"Registered chat {chat_id}")

    async def _save_active(self, chat_id: int, session: Active) -> None:
        stmt = (
            update(users)
            .where(users.c.chat_id == chat_id)
            .values(
                history=serialize_history(session.history),
                model_version=session.version.value,
            )
        )
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save session for chat {chat_id}: {e}") from e

        if result.rowcount == 0:
            raise StorageError(f"No session record for chat {chat_id}")
