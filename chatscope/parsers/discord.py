"""Discord adapter for channel history fetched from the REST API.

Accepts either a bare list of message objects or ``{"channel": {...},
"messages": [...]}``. The API returns newest messages first.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..models import ParsedConversation, Reaction
from .base import DraftMessage, PlatformAdapter, build_conversation, classify_content, iso_to_ms, load_json

DEFAULT = 0
REPLY = 19
USER_MESSAGE_TYPES = frozenset({DEFAULT, REPLY})


def display_name(user: Mapping[str, Any]) -> str:
    return str(user.get("global_name") or user.get("username") or "")


def _messages_of(data: Any) -> tuple[list[Any], str]:
    if isinstance(data, list):
        return data, ""
    if isinstance(data, Mapping) and isinstance(data.get("messages"), list):
        channel = data.get("channel") or {}
        name = channel.get("name") if isinstance(channel, Mapping) else None
        return data["messages"], str(name or data.get("channel_name") or "")
    raise ValueError("Not a discord export")


class DiscordAdapter(PlatformAdapter):
    platform = "discord"

    def matches(self, data: Any) -> bool:
        try:
            messages, _ = _messages_of(data)
        except ValueError:
            return False
        if not messages:
            return False
        first = messages[0]
        return isinstance(first, Mapping) and isinstance(first.get("author"), Mapping) and "timestamp" in first

    def _draft(self, msg: Mapping[str, Any]) -> DraftMessage:
        author = msg["author"]
        content = str(msg.get("content") or "")
        stickers = msg.get("sticker_items") or []
        sticker = str(stickers[0].get("name") or "sticker") if stickers else None
        attachments = msg.get("attachments") or []
        msg_type, content, has_link = classify_content(
            content,
            sticker=sticker,
            has_attachment=bool(attachments),
            link_payload=bool(msg.get("embeds")) and not content.strip(),
        )
        reactions = [
            Reaction(emoji=str(r["emoji"]["name"]), actor="unknown", count=int(r.get("count") or 1))
            for r in msg.get("reactions") or []
            if isinstance(r, Mapping) and isinstance(r.get("emoji"), Mapping) and r["emoji"].get("name")
        ]
        mentions = [
            display_name(user)
            for user in msg.get("mentions") or []
            if isinstance(user, Mapping) and not user.get("bot")
        ]
        reference = msg.get("message_reference") or {}
        reply_to = reference.get("message_id") if isinstance(reference, Mapping) else None
        return DraftMessage(
            sender=display_name(author),
            sender_id=str(author["id"]) if author.get("id") is not None else None,
            source_id=str(msg["id"]) if msg.get("id") is not None else None,
            content=content,
            timestamp=iso_to_ms(str(msg["timestamp"]), self.tz),
            type=msg_type,
            reactions=reactions,
            has_media=bool(attachments),
            has_link=has_link,
            is_edited=bool(msg.get("edited_timestamp")),
            reply_to_id=str(reply_to) if reply_to else None,
            mentions=mentions,
        )

    def parse_raw(self, raw: Any) -> ParsedConversation:
        messages, channel_name = _messages_of(load_json(raw))
        drafts = [
            self._draft(msg)
            for msg in messages
            if isinstance(msg, Mapping)
            and isinstance(msg.get("author"), Mapping)
            and not msg["author"].get("bot")
            and msg.get("type", DEFAULT) in USER_MESSAGE_TYPES
        ]
        if all(d.source_id and d.source_id.isdigit() for d in drafts):
            # Snowflake IDs grow with creation time; use them as source order.
            drafts.sort(key=lambda d: int(d.source_id))
        return build_conversation(self.platform, channel_name or "Discord", drafts)
