import pytest
from conftest import fixture_text, ms

from chatscope.models import Reaction
from chatscope.parsers import detect_platform, parse


@pytest.fixture
def conversation():
    return parse(fixture_text("discord.json"))


def test_detects_discord():
    assert detect_platform(fixture_text("discord.json")) == "discord"


def test_bots_and_non_user_types_are_dropped(conversation):
    assert [m.sender for m in conversation.messages] == ["Alice", "Bob", "Alice"]
    assert conversation.participant_names == ["Alice", "Bob"]
    assert conversation.title == "general"


def test_newest_first_input_is_reordered(conversation):
    assert [m.timestamp for m in conversation.messages] == [
        ms(2024, 2, 1, 10, 0),
        ms(2024, 2, 1, 10, 5),
        ms(2024, 2, 1, 10, 10),
    ]


def test_attachments_and_reaction_counts(conversation):
    media = conversation.messages[1]
    assert media.type == "media"
    assert media.reactions == (Reaction(emoji="🔥", actor="unknown", count=2),)


def test_replies_mentions_and_edits(conversation):
    reply = conversation.messages[2]
    assert reply.reply_to_index == 1
    assert reply.mentions == ("Bob",)
    assert reply.is_edited


def test_bare_message_list_is_accepted():
    data = [
        {"id": "2", "content": "later", "timestamp": "2024-02-01T10:01:00+00:00", "author": {"id": "1", "username": "a"}},
        {"id": "1", "content": "first", "timestamp": "2024-02-01T10:00:00+00:00", "author": {"id": "2", "username": "b"}},
    ]
    conversation = parse(data, "discord")
    assert [m.content for m in conversation.messages] == ["first", "later"]
    assert conversation.title == "Discord"
