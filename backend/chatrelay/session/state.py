"""
Session State - the three dialogue phases and the transitions between them.

A chat is in exactly one phase at a time:

    AwaitingCredential --submit key--> PendingVerification
    PendingVerification --key ok-----> Active(history=[], version=default)
    PendingVerification --key bad----> AwaitingCredential
    Active --command / message-------> Active

Everything here is pure: transitions return new values and never touch
storage. PendingVerification is only ever built to be handed to the store's
verifying write; it is never read back.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

Role = Literal["user", "assistant"]


class Turn(BaseModel):
    """One role-tagged message in the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    @staticmethod
    def user(content: str) -> "Turn":
        return Turn(role="user", content=content)

    @staticmethod
    def assistant(content: str) -> "Turn":
        return Turn(role="assistant", content=content)


class ModelVersion(str, Enum):
    """Completion model a chat is bound to."""

    GPT35_TURBO = "gpt-3.5-turbo"  # fast / cheap
    GPT4 = "gpt-4"  # large / capable

    @classmethod
    def default(cls) -> "ModelVersion":
        return cls.GPT35_TURBO

    @classmethod
    def from_stored(cls, value: Optional[str]) -> "ModelVersion":
        """
        Resolve a stored value, falling back to the default.

        Unknown or missing values (older rows, renamed models) must not make
        the whole session unreadable.
        """
        try:
            return cls(value)
        except ValueError:
            return cls.default()


History = Tuple[Turn, ...]


@dataclass(frozen=True)
class AwaitingCredential:
    """No record exists; the next text is treated as an access key."""


@dataclass(frozen=True)
class PendingVerification:
    """A submitted key on its way through the verifying write."""

    candidate: str = field(repr=False)


@dataclass(frozen=True)
class Active:
    """Registered chat with its history and selected model."""

    history: History = ()
    version: ModelVersion = ModelVersion.GPT35_TURBO


Session = Union[AwaitingCredential, PendingVerification, Active]


def submit_candidate(session: Session, candidate: str) -> PendingVerification:
    if isinstance(session, Active):
        raise ValueError("Active sessions do not accept credentials")
    return PendingVerification(candidate=candidate)


def activate() -> Active:
    """State written by a successful verification."""
    return Active(history=(), version=ModelVersion.default())


def reset_history(session: Active) -> Active:
    return Active(history=(), version=session.version)


def drop_oldest(session: Active) -> Active:
    # Empty history stays empty
    return Active(history=session.history[1:], version=session.version)


def select_model(session: Active, version: ModelVersion) -> Active:
    return Active(history=session.history, version=version)


def append_exchange(session: Active, user_text: str, reply: str) -> Active:
    """Append the user's message and the assistant's reply, in that order."""
    return Active(
        history=session.history + (Turn.user(user_text), Turn.assistant(reply)),
        version=session.version,
    )


_history_adapter = TypeAdapter(List[Turn])


def serialize_history(history: History) -> str:
    """Encode history as a JSON array of {"role", "content"} objects."""
    return _history_adapter.dump_json(list(history)).decode("utf-8")


def deserialize_history(raw: Union[str, bytes]) -> History:
    """
    Decode a stored history.

    Raises:
        ValueError: if the payload is not a valid history encoding
    """
    try:
        return tuple(_history_adapter.validate_json(raw))
    except ValidationError as e:
        raise ValueError(f"Invalid history encoding: {e.error_count()} error(s)") from e
