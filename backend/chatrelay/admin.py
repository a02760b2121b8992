"""
ChatRelay - Operator CLI
------------------------

Out-of-band administration of the bot's database. Not reachable from chats.

Usage:
    chatrelay-admin migrate
    chatrelay-admin issue-key [--key KEY]
    chatrelay-admin revoke-key KEY
    chatrelay-admin check-key KEY
    chatrelay-admin reset-chat CHAT_ID

Every command applies pending migrations first and uses DATABASE_URL (or
--database-url).
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from .config import settings
from .storage.credentials import CredentialRegistry
from .storage.errors import StorageError
from .storage.session_store import SessionStore


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chatrelay-admin",
        description="ChatRelay operator tooling (access keys, sessions, schema)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=settings.database_url,
        help=f"SQLAlchemy database URL (default: {settings.database_url})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate", help="Apply pending schema migrations.")

    issue = sub.add_parser("issue-key", help="Register an access key and print it.")
    issue.add_argument("--key", type=str, default=None,
                       help="Key to register (default: generate a random one).")

    revoke = sub.add_parser("revoke-key", help="Remove an access key.")
    revoke.add_argument("key", type=str)

    check = sub.add_parser("check-key", help="Tell whether a key is registered.")
    check.add_argument("key", type=str)

    reset = sub.add_parser("reset-chat", help="Delete a chat's session.")
    reset.add_argument("chat_id", type=int)

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace) -> int:
    """Execute one admin command. Returns the process exit status."""
    store = SessionStore.from_url(args.database_url)
    try:
        await store.initialize()
        registry = CredentialRegistry(store.engine)

        if args.command == "migrate":
            print("Database schema is up to date.")
            return 0

        if args.command == "issue-key":
            try:
                key = await registry.issue(args.key)
            except ValueError as e:
                print(f"[ERROR] {e}", file=sys.stderr)
                return 1
            print(key)
            return 0

        if args.command == "revoke-key":
            if await registry.revoke(args.key):
                print("Key revoked.")
                return 0
            print("[ERROR] Key not found.", file=sys.stderr)
            return 1

        if args.command == "check-key":
            if await registry.verify(args.key):
                print("Key is valid.")
                return 0
            print("Key is not registered.")
            return 1

        if args.command == "reset-chat":
            await store.delete(args.chat_id)
            print(f"Session for chat {args.chat_id} removed.")
            return 0

        print(f"[ERROR] Unknown command: {args.command}", file=sys.stderr)
        return 1
    except StorageError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    return asyncio.run(run_command(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
