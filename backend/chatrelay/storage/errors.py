"""
Storage errors.

CredentialRejectedError is deliberately not a StorageError: a rejected key is
a user mistake, not a fault of the backing store.
"""

from typing import Optional


class StorageError(Exception):
    """Backing store unreachable, or a read/write failed."""


class MigrationError(StorageError):
    """A schema migration could not be applied."""


class HistoryCorruptedError(StorageError):
    """
    A stored history could not be decoded.

    Carries the model version that was stored alongside it so the chat can
    still be reset explicitly without losing the model selection.
    """

    def __init__(self, chat_id: int, model_version: Optional[str] = None):
        super().__init__(f"Stored history for chat {chat_id} is corrupted")
        self.chat_id = chat_id
        self.model_version = model_version


class CredentialRejectedError(Exception):
    """The submitted key is not in the allow-list."""
