"""Telegram Desktop JSON export adapter.

Telegram exports are proper UTF-8. The ``text`` field is either a string or a
list mixing strings and entity objects.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..models import MessageType, ParsedConversation, Reaction
from .base import DraftMessage, PlatformAdapter, build_conversation, classify_content, iso_to_ms, load_json

_MEDIA_TYPES = {"video_file", "voice_message", "video_message", "audio_file", "animation"}


def flatten_text(text: Any) -> str:
    if isinstance(text, str):
        return text
    if isinstance(text, list):
        return "".join(
            part if isinstance(part, str) else str(part.get("text", ""))
            for part in text
            if isinstance(part, (str, Mapping))
        )
    return ""


class TelegramAdapter(PlatformAdapter):
    platform = "telegram"

    def matches(self, data: Any) -> bool:
        if not isinstance(data, Mapping):
            return False
        if not isinstance(data.get("name"), str) or not isinstance(data.get("type"), str):
            return False
        if not isinstance(data.get("id"), int) or not isinstance(data.get("messages"), list):
            return False
        messages = data["messages"]
        if not messages:
            return True
        first = messages[0]
        return isinstance(first, Mapping) and ("date" in first or "date_unixtime" in first)

    def _timestamp(self, msg: Mapping[str, Any]) -> int:
        unix = msg.get("date_unixtime")
        if unix:
            return int(unix) * 1000
        return iso_to_ms(str(msg["date"]), self.tz)

    def _reactions(self, msg: Mapping[str, Any]) -> list[Reaction]:
        reactions: list[Reaction] = []
        for raw in msg.get("reactions") or []:
            if not isinstance(raw, Mapping):
                continue
            emoji = raw.get("emoji") or raw.get("document_id") or ""
            if not emoji:
                continue
            recent = [r for r in raw.get("recent") or [] if isinstance(r, Mapping) and r.get("from")]
            if recent:
                for person in recent:
                    when = person.get("date")
                    reactions.append(
                        Reaction(
                            emoji=emoji,
                            actor=str(person["from"]),
                            timestamp=iso_to_ms(when, self.tz) if when else None,
                        )
                    )
            else:
                reactions.append(Reaction(emoji=emoji, actor="unknown", count=int(raw.get("count") or 1)))
        return reactions

    def _draft(self, msg: Mapping[str, Any]) -> DraftMessage:
        content = flatten_text(msg.get("text"))
        has_attachment = bool(
            msg.get("photo") or msg.get("file") or msg.get("media_type") in _MEDIA_TYPES
        )
        link_payload = any(
            isinstance(e, Mapping) and e.get("type") in ("link", "text_link")
            for e in msg.get("text_entities") or []
        )
        if msg.get("duration_seconds") is not None and msg.get("media_type") is None:
            msg_type: MessageType = "call"
            has_link = False
        else:
            sticker = msg.get("sticker_emoji") or ("sticker" if msg.get("media_type") == "sticker" else None)
            msg_type, content, has_link = classify_content(
                content,
                sticker=sticker,
                has_attachment=has_attachment,
                link_payload=link_payload,
            )
        reply_to = msg.get("reply_to_message_id")
        from_id = msg.get("from_id")
        return DraftMessage(
            sender=str(msg["from"]),
            sender_id=str(from_id) if from_id else None,
            source_id=str(msg["id"]) if msg.get("id") is not None else None,
            content=content,
            timestamp=self._timestamp(msg),
            type=msg_type,
            reactions=self._reactions(msg),
            has_media=has_attachment or msg_type == "sticker",
            has_link=has_link,
            is_edited=bool(msg.get("edited") or msg.get("edited_unixtime")),
            reply_to_id=str(reply_to) if reply_to is not None else None,
        )

    def parse_raw(self, raw: Any) -> ParsedConversation:
        data = load_json(raw)
        if not self.matches(data):
            raise ValueError("Not a telegram export")
        drafts = [
            self._draft(msg)
            for msg in data["messages"]
            # Service entries (joins, pins, calls placed by the app) carry no content.
            if isinstance(msg, Mapping) and msg.get("type") == "message" and msg.get("from")
        ]
        return build_conversation(self.platform, data.get("name") or "Telegram", drafts)
