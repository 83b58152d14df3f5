"""Facebook Messenger JSON export adapter.

Facebook writes every string as if its UTF-8 bytes were latin-1 code points,
so every string field goes through :func:`decode_fb_string`. Long threads are
split across ``message_1.json``, ``message_2.json``, ...; a list of such parts
is merged into one conversation.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from ..models import MessageType, ParsedConversation, Participant, Reaction
from .base import DraftMessage, PlatformAdapter, build_conversation, classify_content, load_json

_ATTACHMENT_KEYS = ("photos", "videos", "audio_files", "gifs", "files")
_SYSTEM_TYPES = {"Subscribe", "Unsubscribe"}


def decode_fb_string(value: str | None) -> str:
    """Repair Facebook's latin-1 escaped UTF-8 ("Cze\\u00c5\\u009b\\u00c4\\u0087" -> "Cześć")."""
    if not value:
        return ""
    try:
        return value.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        # Already proper unicode.
        return value


def _is_standard(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    if not isinstance(data.get("participants"), list) or not isinstance(data.get("messages"), list):
        return False
    messages = data["messages"]
    if messages:
        first = messages[0]
        return isinstance(first, Mapping) and "sender_name" in first and "timestamp_ms" in first
    return isinstance(data.get("title"), str)


def _is_alternate(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    if not isinstance(data.get("participants"), list) or not isinstance(data.get("messages"), list):
        return False
    if not isinstance(data.get("threadName"), str):
        return False
    messages = data["messages"]
    if messages:
        first = messages[0]
        return isinstance(first, Mapping) and "senderName" in first and "timestamp" in first
    return True


def _accepts(parts: list[Any]) -> bool:
    return bool(parts) and all(_is_standard(p) or _is_alternate(p) for p in parts)


class MessengerAdapter(PlatformAdapter):
    platform = "messenger"

    def matches(self, data: Any) -> bool:
        parts = data if isinstance(data, list) else [data]
        return _accepts(parts)

    def parse_raw(self, raw: Any) -> ParsedConversation:
        data = load_json(raw)
        parts = data if isinstance(data, list) else [data]
        if not _accepts(parts):
            raise ValueError(f"Not a {self.platform} export")

        drafts: list[DraftMessage] = []
        participants: list[Participant] = []
        title = ""
        for part in parts:
            if _is_alternate(part):
                part_title, part_people, part_drafts = self._parse_alternate(part)
            else:
                part_title, part_people, part_drafts = self._parse_standard(part)
            # Exports are newest first; a stable sort later needs source order
            # to be chronological for equal timestamps.
            drafts.extend(reversed(part_drafts))
            if not participants:
                participants = part_people
                title = part_title
        return build_conversation(self.platform, title, drafts, participants=participants)

    def default_title(self, names: list[str]) -> str:
        return ", ".join(names)

    def _parse_standard(
        self, data: Mapping[str, Any]
    ) -> tuple[str, list[Participant], list[DraftMessage]]:
        people = [
            Participant(name=decode_fb_string(p.get("name")))
            for p in data.get("participants", [])
            if isinstance(p, Mapping) and p.get("name")
        ]
        title = decode_fb_string(data.get("title")) or self.default_title([p.name for p in people])
        drafts = [
            self._draft(msg)
            for msg in data.get("messages", [])
            if isinstance(msg, Mapping) and msg.get("sender_name") and msg.get("timestamp_ms") is not None
        ]
        return title, people, drafts

    def classify_type(self, msg: Mapping[str, Any]) -> MessageType | None:
        """Return a non-content type (``call``/``system``) or ``None``."""
        kind = msg.get("type")
        if kind == "Call":
            return "call"
        if kind in _SYSTEM_TYPES:
            return "system"
        return None

    def _draft(self, msg: Mapping[str, Any]) -> DraftMessage:
        content = decode_fb_string(msg.get("content"))
        share = msg.get("share") or {}
        link = share.get("link") if isinstance(share, Mapping) else None
        has_attachment = any(msg.get(key) for key in _ATTACHMENT_KEYS)
        sticker = msg.get("sticker")
        sticker_id = None
        if isinstance(sticker, Mapping):
            sticker_id = decode_fb_string(sticker.get("uri")) or "sticker"

        forced = self.classify_type(msg)
        if forced is not None:
            msg_type: MessageType = forced
            has_link = False
        else:
            msg_type, content, has_link = classify_content(
                content,
                sticker=sticker_id,
                has_attachment=has_attachment,
                link_payload=bool(link),
            )

        reactions = [
            Reaction(emoji=decode_fb_string(r.get("reaction")), actor=decode_fb_string(r.get("actor")) or "unknown")
            for r in msg.get("reactions") or []
            if isinstance(r, Mapping) and r.get("reaction")
        ]
        return DraftMessage(
            sender=decode_fb_string(msg.get("sender_name")),
            content=content,
            timestamp=int(msg["timestamp_ms"]),
            type=msg_type,
            reactions=reactions,
            has_media=has_attachment,
            has_link=has_link,
            is_unsent=bool(msg.get("is_unsent")),
        )

    def _parse_alternate(
        self, data: Mapping[str, Any]
    ) -> tuple[str, list[Participant], list[DraftMessage]]:
        people = [Participant(name=str(name)) for name in data.get("participants", []) if name]
        title = re.sub(r"_\d+$", "", data.get("threadName") or "")
        drafts: list[DraftMessage] = []
        for msg in data.get("messages", []):
            if not isinstance(msg, Mapping) or not msg.get("senderName") or msg.get("timestamp") is None:
                continue
            content = msg.get("text") or ""
            has_media = bool(msg.get("media"))
            kind = msg.get("type")
            if kind in ("call", "system"):
                msg_type: MessageType = kind
                has_link = False
            else:
                msg_type, content, has_link = classify_content(content, has_attachment=has_media)
            drafts.append(
                DraftMessage(
                    sender=str(msg["senderName"]),
                    content=content,
                    timestamp=int(msg["timestamp"]),
                    type=msg_type,
                    reactions=[
                        Reaction(emoji=r["reaction"], actor=r.get("actor") or "unknown")
                        for r in msg.get("reactions") or []
                        if isinstance(r, Mapping) and r.get("reaction")
                    ],
                    has_media=has_media,
                    has_link=has_link,
                    is_unsent=bool(msg.get("isUnsent")),
                )
            )
        # The alternate format is oldest first; undo the reversal applied by the caller.
        drafts.reverse()
        return title or self.default_title([p.name for p in people]), people, drafts
