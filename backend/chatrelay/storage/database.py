"""
Database engine and table definitions.

The schema itself is owned by migrations.py; the tables below only describe
it for query building and must be kept in step with the latest migration.
"""

from pathlib import Path

from sqlalchemy import Column, Integer, LargeBinary, MetaData, Table, Text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

metadata = MetaData()

api_keys = Table(
    "api_keys",
    metadata,
    Column("key_hash", LargeBinary, nullable=False, unique=True),
    Column("key_prefix", LargeBinary, primary_key=True),
)

users = Table(
    "users",
    metadata,
    Column("chat_id", Integer, primary_key=True, autoincrement=False),
    Column("history", Text, nullable=False),  # JSON-encoded list of turns
    Column("model_version", Text),
)


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine, making sure a SQLite file's directory exists.

    Args:
        database_url: SQLAlchemy URL, e.g. "sqlite+aiosqlite:///./data/chatrelay.db"
        echo: Log emitted SQL
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(url, echo=echo)
