"""
Command Interpreter - recognizes control commands in an Active chat.

Anything that is not a command is ordinary conversational input.
"""

from enum import Enum
from typing import Optional, Tuple

from .state import Active, ModelVersion, drop_oldest, reset_history, select_model


class Command(Enum):
    RESET = "/reset"
    TAIL = "/tail"
    GPT3 = "/gpt3"
    GPT4 = "/gpt4"


# Longest prefix wins when prefixes overlap
_BY_PREFIX = sorted(Command, key=lambda c: len(c.value), reverse=True)

ACKNOWLEDGEMENTS = {
    Command.RESET: "✖️ History Reseted",
    Command.TAIL: "✖️ Take Tail",
    Command.GPT3: "🕹GPT-3.5",
    Command.GPT4: "🕹GPT-4",
}


def parse_command(text: str) -> Optional[Command]:
    """Return the command ``text`` starts with, or None for ordinary input."""
    stripped = text.lstrip()
    for command in _BY_PREFIX:
        if stripped.startswith(command.value):
            return command
    return None


def apply_command(session: Active, command: Command) -> Tuple[Active, str]:
    """
    Apply a command to an Active session.

    Returns:
        The new session and the acknowledgement to send back
    """
    if command is Command.RESET:
        updated = reset_history(session)
    elif command is Command.TAIL:
        updated = drop_oldest(session)
    elif command is Command.GPT3:
        updated = select_model(session, ModelVersion.GPT35_TURBO)
    elif command is Command.GPT4:
        updated = select_model(session, ModelVersion.GPT4)
    else:
        raise ValueError(f"Unhandled command: {command!r}")
    return updated, ACKNOWLEDGEMENTS[command]
