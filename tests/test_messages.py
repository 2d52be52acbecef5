"""
Tests for request parsing and the message normalizer.
Run with: pytest tests/test_messages.py
"""

import pytest

from voicebridge.errors import ValidationFailure
from voicebridge.messages import ChatMessage, ChatRequest, ModelDescriptor, normalize_messages


def _msgs(*raw):
    return [ChatMessage.from_dict(m) for m in raw]


# ---------------------------------------------------------------------------
# normalize_messages
# ---------------------------------------------------------------------------

def test_orders_by_timestamp_and_splits_instruction():
    """Unordered input comes out ascending, system content goes to the instruction."""
    messages = _msgs(
        {"role": "user", "content": "Hi", "ts": 2},
        {"role": "system", "content": "Be brief.", "ts": 1},
        {"role": "assistant", "content": "Hello", "ts": 3},
    )
    instruction, turns = normalize_messages(messages)
    assert instruction == "Be brief."
    assert turns == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ]


def test_content_is_trimmed():
    instruction, turns = normalize_messages(_msgs(
        {"role": "system", "content": "  rules \n", "ts": 0},
        {"role": "user", "content": "\t question  ", "ts": 1},
    ))
    assert instruction == "rules"
    assert turns == [{"role": "user", "content": "question"}]


def test_no_system_message_gives_empty_instruction():
    instruction, turns = normalize_messages(_msgs({"role": "user", "content": "Hi", "ts": 1}))
    assert instruction == ""
    assert len(turns) == 1


def test_first_system_message_wins_by_default():
    messages = _msgs(
        {"role": "system", "content": "second", "ts": 5},
        {"role": "system", "content": "first", "ts": 1},
        {"role": "user", "content": "Hi", "ts": 2},
    )
    instruction, turns = normalize_messages(messages)
    assert instruction == "first"
    assert all(t["role"] != "system" for t in turns)


def test_last_system_message_wins_when_preferred():
    messages = _msgs(
        {"role": "system", "content": "second", "ts": 5},
        {"role": "system", "content": "first", "ts": 1},
        {"role": "user", "content": "Hi", "ts": 2},
    )
    instruction, turns = normalize_messages(messages, prefer="last")
    assert instruction == "second"
    assert turns == [{"role": "user", "content": "Hi"}]


def test_sort_is_stable_for_equal_timestamps():
    messages = _msgs(
        {"role": "user", "content": "a", "ts": 1},
        {"role": "assistant", "content": "b", "ts": 1},
        {"role": "user", "content": "c", "ts": 1},
    )
    _, turns = normalize_messages(messages)
    assert [t["content"] for t in turns] == ["a", "b", "c"]


def test_missing_timestamp_sorts_first():
    messages = _msgs(
        {"role": "user", "content": "later", "ts": 3},
        {"role": "user", "content": "untimed"},
    )
    _, turns = normalize_messages(messages)
    assert [t["content"] for t in turns] == ["untimed", "later"]


def test_iso_string_timestamps_sort_lexically():
    messages = _msgs(
        {"role": "user", "content": "b", "ts": "2026-10-01T10:00:05Z"},
        {"role": "user", "content": "a", "ts": "2026-10-01T10:00:01Z"},
    )
    _, turns = normalize_messages(messages)
    assert [t["content"] for t in turns] == ["a", "b"]


def test_only_system_messages_yields_no_turns():
    instruction, turns = normalize_messages(_msgs({"role": "system", "content": "x", "ts": 0}))
    assert instruction == "x"
    assert turns == []


def test_empty_input():
    assert normalize_messages([]) == ("", [])


def test_bad_prefer_value():
    with pytest.raises(ValueError):
        normalize_messages([], prefer="middle")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def test_unknown_role_is_rejected():
    with pytest.raises(ValidationFailure):
        ChatMessage.from_dict({"role": "tool", "content": "x"})


def test_non_string_content_is_rejected():
    with pytest.raises(ValidationFailure):
        ChatMessage.from_dict({"role": "user", "content": ["x"]})


def test_model_descriptor_requires_both_fields():
    assert ModelDescriptor.from_dict({"id": 7, "variant": "gpt-4o"}) == ModelDescriptor("7", "gpt-4o")
    with pytest.raises(ValidationFailure):
        ModelDescriptor.from_dict({"id": "m"})
    with pytest.raises(ValidationFailure):
        ModelDescriptor.from_dict("gpt-4o")


def test_chat_request_from_body():
    req = ChatRequest.from_body({
        "model": {"id": "m1", "variant": "gpt-4o"},
        "messages": [{"role": "user", "content": "Hi", "ts": 1}],
        "user_id": "u1",
        "temperature": 0.2,
    })
    assert req.model.variant == "gpt-4o"
    assert req.user_id == "u1"
    assert req.extras == {"temperature": 0.2}


@pytest.mark.parametrize("missing", ["model", "messages", "user_id"])
def test_chat_request_missing_field(missing):
    body = {
        "model": {"id": "m1", "variant": "gpt-4o"},
        "messages": [{"role": "user", "content": "Hi"}],
        "user_id": "u1",
    }
    del body[missing]
    with pytest.raises(ValidationFailure):
        ChatRequest.from_body(body)


def test_chat_request_messages_must_be_list():
    with pytest.raises(ValidationFailure):
        ChatRequest.from_body({"model": {"id": "m", "variant": "v"}, "messages": "hi", "user_id": "u"})


def test_empty_messages_list_parses():
    """An empty list is well-formed; the proxy rejects it after normalizing."""
    req = ChatRequest.from_body({"model": {"id": "m", "variant": "v"}, "messages": [], "user_id": "u"})
    assert req.messages == []
