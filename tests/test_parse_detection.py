import pytest
from conftest import fixture_text

from chatscope.parsers import detect_platform, get_adapter, parse

FIXTURES = [
    "whatsapp_android_pl.txt",
    "messenger.json",
    "instagram.json",
    "telegram.json",
    "discord.json",
]


@pytest.mark.parametrize("name", FIXTURES)
def test_messages_are_ordered_and_indexed(name):
    conversation = parse(fixture_text(name))
    messages = conversation.messages
    assert messages
    assert all(m.index == i for i, m in enumerate(messages))
    assert all(a.timestamp <= b.timestamp for a, b in zip(messages, messages[1:]))


@pytest.mark.parametrize("name", FIXTURES)
def test_bytes_with_bom_are_accepted(name):
    raw = "\ufeff".encode("utf-8") + fixture_text(name).encode("utf-8")
    assert parse(raw).messages == parse(fixture_text(name)).messages


def test_unrecognised_input_returns_empty_conversation(caplog):
    conversation = parse("just some notes\nnothing here")
    assert conversation.is_empty
    assert conversation.platform == "unknown"
    assert "Could not detect" in caplog.text


def test_malformed_json_returns_empty_conversation():
    assert parse('{"name": "x", "messages": [', "telegram").is_empty
    assert detect_platform('{"name": "x", "messages": [') is None


def test_deeply_nested_json_returns_empty_conversation():
    nested = "[" * 200_000 + "]" * 200_000
    assert parse(nested).is_empty
    assert parse(nested, "telegram").is_empty
    assert parse(nested.encode("utf-8"), "discord").is_empty


def test_hint_overrides_detection():
    conversation = parse(fixture_text("instagram.json"), "messenger")
    assert conversation.platform == "messenger"
    assert conversation.title == "zosia.k, michal_w"


def test_unknown_hint_raises():
    with pytest.raises(KeyError):
        get_adapter("myspace")
    with pytest.raises(KeyError):
        parse("anything", "myspace")
