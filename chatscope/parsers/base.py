"""Base abstractions shared by the platform adapters."""

from __future__ import annotations

import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any

from ..models import (
    ConversationMetadata,
    DateRange,
    MessageType,
    ParsedConversation,
    Participant,
    Reaction,
    UnifiedMessage,
)

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

BARE_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
URL_RE = re.compile(r"https?://[^\s<>'\"]+", re.IGNORECASE)


@dataclass
class DraftMessage:
    """Adapter-side message before sorting and index assignment."""

    sender: str
    content: str
    timestamp: int
    type: MessageType = "text"
    sender_id: str | None = None
    source_id: str | None = None
    reactions: list[Reaction] = field(default_factory=list)
    has_media: bool = False
    has_link: bool = False
    is_unsent: bool = False
    is_edited: bool = False
    reply_to_id: str | None = None
    mentions: list[str] = field(default_factory=list)


def classify_content(
    content: str,
    *,
    sticker: str | None = None,
    has_attachment: bool = False,
    link_payload: bool = False,
) -> tuple[MessageType, str, bool]:
    """Return ``(type, content, has_link)`` for a user message.

    Stickers win over attachments, attachments over links. A link requires a
    bare URL, or empty text with a link preview; a URL inside other text only
    sets ``has_link``.
    """

    stripped = content.strip()
    has_link = link_payload or URL_RE.search(content) is not None
    if sticker is not None:
        return "sticker", sticker, has_link
    if has_attachment:
        return "media", content, has_link
    if BARE_URL_RE.match(stripped) or (not stripped and link_payload):
        return "link", content, True
    return "text", content, has_link


def iso_to_ms(value: str, tz: tzinfo) -> int:
    """Parse an ISO-8601 timestamp; naive values are read in ``tz``."""

    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return int(parsed.timestamp() * 1000)


def load_json(raw: Any) -> Any:
    """Decode ``raw`` into JSON data; already-decoded values pass through."""

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8-sig")
    if isinstance(raw, str):
        try:
            return json.loads(raw.lstrip("\ufeff"))
        except RecursionError:
            raise ValueError("JSON nested too deeply") from None
    return raw


def load_text(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8-sig")
    if isinstance(raw, str):
        return raw
    raise TypeError(f"Expected text export, got {type(raw).__name__}")


def empty_conversation(platform: str, title: str = "") -> ParsedConversation:
    return ParsedConversation(platform=platform, title=title or platform.title())


def _dedup_participants(
    declared: list[Participant], drafts: list[DraftMessage]
) -> list[Participant]:
    participants: list[Participant] = []
    seen_ids: set[str] = set()
    seen_names: set[str] = set()

    def add(name: str, platform_id: str | None) -> None:
        if not name:
            return
        if (platform_id is not None and platform_id in seen_ids) or name in seen_names:
            return
        if platform_id is not None:
            seen_ids.add(platform_id)
        seen_names.add(name)
        participants.append(Participant(name=name, platform_id=platform_id))

    for participant in declared:
        add(participant.name, participant.platform_id)
    for draft in drafts:
        if draft.type != "system":
            add(draft.sender, draft.sender_id)
    return participants


def build_conversation(
    platform: str,
    title: str,
    drafts: list[DraftMessage],
    *,
    participants: list[Participant] | None = None,
) -> ParsedConversation:
    """Sort drafts, assign indices, resolve replies and compute metadata."""

    # sorted() is stable: equal timestamps keep source order.
    ordered = sorted(drafts, key=lambda d: d.timestamp)
    id_to_index: dict[str, int] = {}
    for index, draft in enumerate(ordered):
        if draft.source_id is not None and draft.source_id not in id_to_index:
            id_to_index[draft.source_id] = index

    people = _dedup_participants(participants or [], ordered)
    names = {p.name for p in people}

    messages: list[UnifiedMessage] = []
    for index, draft in enumerate(ordered):
        mentions = tuple(m for m in draft.mentions if m in names)
        reply_to = id_to_index.get(draft.reply_to_id) if draft.reply_to_id else None
        messages.append(
            UnifiedMessage(
                index=index,
                sender=draft.sender,
                content=draft.content,
                timestamp=draft.timestamp,
                type=draft.type,
                reactions=tuple(draft.reactions),
                has_media=draft.has_media,
                has_link=draft.has_link,
                is_unsent=draft.is_unsent,
                is_edited=draft.is_edited,
                reply_to_index=reply_to,
                mentions=mentions or None,
            )
        )

    counted = [m for m in messages if m.type != "system"] or messages
    if counted:
        start = min(m.timestamp for m in counted)
        end = max(m.timestamp for m in counted)
    else:
        start = end = 0
    duration_days = max(1, math.ceil((end - start) / DAY_MS))

    return ParsedConversation(
        platform=platform,
        title=title or platform.title(),
        participants=tuple(people),
        messages=tuple(messages),
        metadata=ConversationMetadata(
            total_messages=sum(1 for m in messages if m.type != "system"),
            date_range=DateRange(start=start, end=end),
            is_group=len(people) > 2,
            duration_days=duration_days,
        ),
    )


class PlatformAdapter(ABC):
    """Converts one platform's raw export into the canonical model."""

    #: Lowercase platform identifier used for hints and registry lookups.
    platform: str

    def __init__(self, *, tz: tzinfo) -> None:
        self.tz = tz

    @abstractmethod
    def matches(self, data: Any) -> bool:
        """Return ``True`` when decoded ``data`` looks like this platform's export."""

    @abstractmethod
    def parse_raw(self, raw: Any) -> ParsedConversation:
        """Convert ``raw`` into a conversation; may raise on malformed input."""
