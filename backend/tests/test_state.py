"""
Unit tests for session phases, transitions and history encoding.
"""

import json

import pytest

from chatrelay.session.state import (
    Active,
    AwaitingCredential,
    ModelVersion,
    PendingVerification,
    Turn,
    activate,
    append_exchange,
    deserialize_history,
    drop_oldest,
    reset_history,
    select_model,
    serialize_history,
    submit_candidate,
)


class TestModelVersion:
    """Tests for ModelVersion resolution."""

    def test_default_is_fast_model(self):
        assert ModelVersion.default() is ModelVersion.GPT35_TURBO

    def test_from_stored_known_values(self):
        assert ModelVersion.from_stored("gpt-3.5-turbo") is ModelVersion.GPT35_TURBO
        assert ModelVersion.from_stored("gpt-4") is ModelVersion.GPT4

    @pytest.mark.parametrize("value", [None, "", "gpt-5-preview", "GPT4", "Gpt4"])
    def test_from_stored_unknown_falls_back_to_default(self, value):
        assert ModelVersion.from_stored(value) is ModelVersion.default()


class TestTransitions:
    """Tests for the pure state transitions."""

    def test_submit_candidate_from_awaiting(self):
        pending = submit_candidate(AwaitingCredential(), "secret-key")
        assert isinstance(pending, PendingVerification)
        assert pending.candidate == "secret-key"

    def test_candidate_not_in_repr(self):
        assert "secret-key" not in repr(PendingVerification("secret-key"))

    def test_submit_candidate_from_active_rejected(self):
        with pytest.raises(ValueError):
            submit_candidate(Active(), "key")

    def test_activate(self):
        session = activate()
        assert session.history == ()
        assert session.version is ModelVersion.default()

    def test_reset_keeps_version(self):
        session = Active(history=(Turn.user("hi"), Turn.assistant("hello")), version=ModelVersion.GPT4)
        updated = reset_history(session)
        assert updated.history == ()
        assert updated.version is ModelVersion.GPT4

    def test_drop_oldest(self):
        session = Active(history=(Turn.user("a"), Turn.assistant("b"), Turn.user("c")))
        assert drop_oldest(session).history == (Turn.assistant("b"), Turn.user("c"))

    def test_drop_oldest_on_empty_history_is_noop(self):
        session = Active(history=(), version=ModelVersion.GPT4)
        updated = drop_oldest(session)
        assert updated.history == ()
        assert updated.version is ModelVersion.GPT4

    def test_select_model_keeps_history(self):
        history = (Turn.user("hi"),)
        updated = select_model(Active(history=history), ModelVersion.GPT4)
        assert updated.history == history
        assert updated.version is ModelVersion.GPT4

    def test_append_exchange_order(self):
        session = Active(history=(Turn.user("first"), Turn.assistant("reply")))
        updated = append_exchange(session, "second", "X")
        assert updated.history[-2:] == (Turn.user("second"), Turn.assistant("X"))
        assert len(updated.history) == 4

    def test_transitions_do_not_mutate_input(self):
        session = Active(history=(Turn.user("hi"),))
        append_exchange(session, "more", "reply")
        drop_oldest(session)
        reset_history(session)
        assert session.history == (Turn.user("hi"),)

    def test_turns_are_immutable(self):
        turn = Turn.user("hi")
        with pytest.raises(Exception):
            turn.content = "changed"


class TestHistoryEncoding:
    """Tests for history serialization."""

    def test_round_trip_preserves_roles_content_and_order(self):
        history = (
            Turn.user("Hallo 👋"),
            Turn.assistant("line one\nline \"two\""),
            Turn.user(""),
            Turn.assistant("你好"),
        )
        assert deserialize_history(serialize_history(history)) == history

    def test_empty_history(self):
        assert serialize_history(()) == "[]"
        assert deserialize_history("[]") == ()

    def test_wire_format(self):
        encoded = serialize_history((Turn.user("hi"), Turn.assistant("hello")))
        assert json.loads(encoded) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_accepts_bytes(self):
        assert deserialize_history(b'[{"role": "user", "content": "hi"}]') == (Turn.user("hi"),)

    @pytest.mark.parametrize("raw", [
        "not json",
        "{\"role\": \"user\"}",
        "[{\"role\": \"robot\", \"content\": \"hi\"}]",
        "[{\"role\": \"user\"}]",
        "",
    ])
    def test_corrupted_encoding_raises_value_error(self, raw):
        with pytest.raises(ValueError):
            deserialize_history(raw)
