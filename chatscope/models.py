"""Canonical conversation model shared by every pipeline stage.

Every adapter produces these types and nothing platform specific crosses the
adapter boundary. Instances are immutable once built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

MessageType = Literal["text", "media", "link", "sticker", "system", "call"]
Platform = Literal["messenger", "instagram", "whatsapp", "telegram", "discord"]

PLATFORMS: tuple[str, ...] = ("messenger", "instagram", "whatsapp", "telegram", "discord")

#: Types excluded from sampling and from most metric denominators.
NON_CONTENT_TYPES = frozenset({"system", "call"})


@dataclass(frozen=True)
class Reaction:
    emoji: str
    actor: str = "unknown"
    count: int = 1
    timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"emoji": self.emoji, "count": self.count, "actor": self.actor}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data


@dataclass(frozen=True)
class UnifiedMessage:
    """One normalized chat message."""

    index: int
    sender: str
    content: str
    timestamp: int
    type: MessageType = "text"
    reactions: tuple[Reaction, ...] = ()
    has_media: bool = False
    has_link: bool = False
    is_unsent: bool = False
    is_edited: bool = False
    reply_to_index: int | None = None
    mentions: tuple[str, ...] | None = None

    @property
    def is_eligible(self) -> bool:
        """Whether the message may be handed to the language model."""
        if self.type in NON_CONTENT_TYPES or self.is_unsent:
            return False
        return bool(self.content and self.content.strip())

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp,
            "type": self.type,
            "reactions": [r.to_dict() for r in self.reactions],
            "hasMedia": self.has_media,
            "hasLink": self.has_link,
            "isUnsent": self.is_unsent,
            "isEdited": self.is_edited,
        }
        if self.reply_to_index is not None:
            data["replyToIndex"] = self.reply_to_index
        if self.mentions:
            data["mentions"] = list(self.mentions)
        return data


@dataclass(frozen=True)
class Participant:
    name: str
    # Used for deduplication only, never displayed.
    platform_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.platform_id is not None:
            data["platformId"] = self.platform_id
        return data


@dataclass(frozen=True)
class DateRange:
    start: int = 0
    end: int = 0


@dataclass(frozen=True)
class ConversationMetadata:
    total_messages: int = 0
    date_range: DateRange = field(default_factory=DateRange)
    is_group: bool = False
    duration_days: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMessages": self.total_messages,
            "dateRange": {"start": self.date_range.start, "end": self.date_range.end},
            "isGroup": self.is_group,
            "durationDays": self.duration_days,
        }


@dataclass(frozen=True)
class ParsedConversation:
    platform: str
    title: str
    participants: tuple[Participant, ...] = ()
    messages: tuple[UnifiedMessage, ...] = ()
    metadata: ConversationMetadata = field(default_factory=ConversationMetadata)

    @property
    def participant_names(self) -> list[str]:
        return [p.name for p in self.participants]

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "title": self.title,
            "participants": [p.to_dict() for p in self.participants],
            "messages": [m.to_dict() for m in self.messages],
            "metadata": self.metadata.to_dict(),
        }
