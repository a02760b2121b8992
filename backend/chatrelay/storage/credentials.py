"""
Access key verification and issuance.

Keys are never stored. Each issued key is kept as a (hash, prefix) tuple: the
SHA3-256 digest of the whole key plus its first KEY_PREFIX_LENGTH bytes. A
candidate is accepted only if both parts match the same row.
"""

import hashlib
import logging
import secrets
from typing import Optional, Tuple

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .database import api_keys
from .errors import StorageError

logger = logging.getLogger(__name__)

KEY_PREFIX_LENGTH = 10
GENERATED_KEY_BYTES = 24  # token_urlsafe(24) -> 32 characters


def key_digest(key: str) -> Tuple[bytes, bytes]:
    """
    Compute the verification tuple for a key.

    Args:
        key: Plain access key

    Returns:
        (hash, prefix) as stored in the api_keys table

    Raises:
        ValueError: If the key is empty or cannot be encoded
    """
    if not isinstance(key, str) or not key:
        raise ValueError("Key must be a non-empty string")
    try:
        raw = key.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError("Key is not valid text") from e
    return hashlib.sha3_256(raw).digest(), raw[:KEY_PREFIX_LENGTH]


class CredentialRegistry:
    """
    Allow-list of access keys.

    Any registered key authorizes any number of chats; nothing ties a key to
    the chats it was used in.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def verify(self, candidate: str) -> bool:
        """
        Check a candidate key against the allow-list.

        Malformed candidates simply fail verification.

        Raises:
            StorageError: If the lookup itself fails
        """
        try:
            key_hash, key_prefix = key_digest(candidate)
        except ValueError:
            return False

        stmt = select(api_keys.c.key_prefix).where(
            api_keys.c.key_hash == key_hash,
            api_keys.c.key_prefix == key_prefix,
        )
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Credential lookup failed: {e}") from e
        return row is not None

    async def issue(self, key: Optional[str] = None) -> str:
        """
        Register a key, generating one if none is given.

        Args:
            key: Key to register; a random URL-safe key is generated when omitted

        Returns:
            The registered key. It is not recoverable afterwards.

        Raises:
            ValueError: If the key is empty or already registered (same key or prefix)
            StorageError: If the write fails
        """
        if key is None:
            key = secrets.token_urlsafe(GENERATED_KEY_BYTES)
        key_hash, key_prefix = key_digest(key)

        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    insert(api_keys).values(key_hash=key_hash, key_prefix=key_prefix)
                )
        except IntegrityError as e:
            raise ValueError("A key with the same value or prefix is already registered") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Credential write failed: {e}") from e

        logger.info("Issued new access key")
        return key

    async def revoke(self, key: str) -> bool:
        """
        Remove a key from the allow-list.

        Chats already registered with it stay registered.

        Returns:
            True if a key was removed
        """
        try:
            key_hash, key_prefix = key_digest(key)
        except ValueError:
            return False

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(api_keys).where(
                        api_keys.c.key_hash == key_hash,
                        api_keys.c.key_prefix == key_prefix,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Credential delete failed: {e}") from e

        removed = result.rowcount > 0
        if removed:
            logger.info("Revoked access key")
        return removed

    async def count(self) -> int:
        """Number of registered keys."""
        try:
            async with self.engine.connect() as conn:
                return (await conn.execute(select(func.count()).select_from(api_keys))).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Credential count failed: {e}") from e
