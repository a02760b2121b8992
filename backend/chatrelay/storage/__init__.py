"""Storage module - SQLite persistence for sessions and access keys."""

from .credentials import CredentialRegistry, key_digest
from .errors import CredentialRejectedError, HistoryCorruptedError, MigrationError, StorageError
from .migrations import apply_migrations
from .session_store import SessionStore

__all__ = [
    'CredentialRegistry', 'key_digest', 'CredentialRejectedError', 'HistoryCorruptedError',
    'MigrationError', 'StorageError', 'apply_migrations', 'SessionStore',
]
