"""Session module - dialogue phases, transitions and control commands."""

from .state import (
    Active,
    AwaitingCredential,
    ModelVersion,
    PendingVerification,
    Session,
    Turn,
)
from .commands import Command, apply_command, parse_command

__all__ = [
    'Active', 'AwaitingCredential', 'ModelVersion', 'PendingVerification',
    'Session', 'Turn', 'Command', 'apply_command', 'parse_command',
]
