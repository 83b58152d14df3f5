"""WhatsApp ``.txt`` export adapter.

Exports differ by locale and OS::

    Android PL:  01.02.2024, 14:23 - Ania: Hej
    Android EN:  [01/02/2024, 2:23 PM] Ania: Hey
    iOS:         [2024-01-02, 14:23:45] Ania: Hey

Lines that do not start with a date continue the previous message. Notices
without a ``Name: text`` structure are kept as ``system`` messages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..models import ParsedConversation
from .base import DraftMessage, PlatformAdapter, build_conversation, classify_content, load_text

_DATE = r"(\d{1,4}[./-]\d{1,2}[./-]\d{1,4})"
_TIME = r"(\d{1,2}[:.]\d{2}(?:[:.]\d{2})?(?:\s*[AaPp]\.?\s?[Mm]\.?)?)"
# Bracketed (iOS) or dash-separated (Android) prefix.
LINE_START_RE = re.compile(
    rf"^(?:\[{_DATE},?\s+{_TIME}\]\s*(?:[-–—]\s*)?|{_DATE},?\s+{_TIME}\s*[-–—]\s*)"
)
SENDER_CONTENT_RE = re.compile(r"^(.+?):\s([\s\S]*)$")

MAX_CONTENT_CHARS = 100_000
TRUNCATION_MARKER = "\n[...truncated]"

MEDIA_OMITTED = frozenset(
    {
        "<media omitted>",
        "<multimedia omitido>",
        "<archivo omitido>",
        "<medien ausgeschlossen>",
        "<media weggelaten>",
        "<załączone multimedia>",
        "image omitted",
        "video omitted",
        "audio omitted",
        "sticker omitted",
        "gif omitted",
        "document omitted",
        "contact card omitted",
    }
)
FILE_ATTACHED_RE = re.compile(
    r"\.(jpg|jpeg|png|gif|webp|mp4|mp3|opus|ogg|pdf|docx?|xlsx?|pptx?|zip|rar)\s*\(file attached\)",
    re.IGNORECASE,
)

DELETED_TEXTS = frozenset(
    {
        "this message was deleted",
        "you deleted this message",
        "ta wiadomość została usunięta",
        "usunąłeś tę wiadomość",
    }
)

SYSTEM_INDICATORS = (
    "messages and calls are end-to-end encrypted",
    "wiadomości oraz połączenia są szyfrowane",
    "created group",
    "changed the subject",
    "changed the group description",
    "changed this group",
    "joined using",
    "security code changed",
    "you were added",
    "you're now an admin",
    "disappearing messages",
    "wiadomości znikające",
    "missed voice call",
    "missed video call",
)


@dataclass
class _Pending:
    timestamp: int
    sender: str
    content: str
    is_system: bool


def _date_time(match: re.Match[str]) -> tuple[str, str]:
    if match.group(1) is not None:
        return match.group(1), match.group(2)
    return match.group(3), match.group(4)


def parse_date(date_str: str) -> tuple[int, int, int]:
    """Return ``(year, month, day)`` for DD/MM/YYYY, MM/DD/YYYY or YYYY-MM-DD."""

    parts = re.split(r"[./-]", date_str)
    if len(parts) != 3:
        raise ValueError(f"Cannot parse date: {date_str!r}")
    a, b, c = (int(p) for p in parts)
    if len(parts[0]) == 4:
        return a, b, c
    year = c
    if year < 100:
        year += 2000 if year < 70 else 1900
    if a > 12:
        return year, b, a
    if b > 12:
        return year, a, b
    # Ambiguous; day-first is the common case outside the US.
    return year, b, a


def parse_time(time_str: str) -> tuple[int, int, int]:
    text = time_str.strip().lower().replace(".", ":")
    is_pm = re.search(r"p\s?:?m", text) is not None
    is_am = re.search(r"a\s?:?m", text) is not None
    numeric = re.sub(r"[ap]\s?:?m:?", "", text).strip().rstrip(":")
    pieces = [p for p in numeric.split(":") if p]
    hours = int(pieces[0])
    minutes = int(pieces[1]) if len(pieces) > 1 else 0
    seconds = int(pieces[2]) if len(pieces) > 2 else 0
    if is_pm and hours < 12:
        hours += 12
    if is_am and hours == 12:
        hours = 0
    return hours, minutes, seconds


def is_system_line(rest: str) -> bool:
    if ":" not in rest:
        return True
    match = SENDER_CONTENT_RE.match(rest)
    if match and match.group(2).strip().lower() in DELETED_TEXTS:
        return False
    lower = rest.lower()
    return any(indicator in lower for indicator in SYSTEM_INDICATORS)


def is_media_content(content: str) -> bool:
    lower = content.strip().lower()
    return lower in MEDIA_OMITTED or FILE_ATTACHED_RE.search(content) is not None


class WhatsAppAdapter(PlatformAdapter):
    platform = "whatsapp"

    def matches(self, data: Any) -> bool:
        if not isinstance(data, str):
            return False
        for line in data.lstrip("\ufeff").splitlines()[:20]:
            if LINE_START_RE.match(line):
                return True
        return False

    def _timestamp(self, date_str: str, time_str: str) -> int:
        year, month, day = parse_date(date_str)
        hours, minutes, seconds = parse_time(time_str)
        moment = datetime(year, month, day, hours, minutes, seconds, tzinfo=self.tz)
        return int(moment.timestamp() * 1000)

    def _split(self, text: str) -> list[_Pending]:
        pending: list[_Pending] = []
        current: _Pending | None = None
        for line in text.lstrip("\ufeff").splitlines():
            if not line.strip() and current is None:
                continue
            match = LINE_START_RE.match(line)
            timestamp = None
            if match:
                try:
                    timestamp = self._timestamp(*_date_time(match))
                except ValueError:
                    timestamp = None
            if timestamp is None:
                if current is not None:
                    if len(current.content) > MAX_CONTENT_CHARS:
                        if not current.content.endswith(TRUNCATION_MARKER):
                            current.content = current.content[:MAX_CONTENT_CHARS] + TRUNCATION_MARKER
                    else:
                        current.content += "\n" + line
                continue

            if current is not None:
                pending.append(current)
            rest = line[match.end():]
            sender_match = None if is_system_line(rest) else SENDER_CONTENT_RE.match(rest)
            if sender_match:
                current = _Pending(timestamp, sender_match.group(1).strip(), sender_match.group(2), False)
            else:
                current = _Pending(timestamp, "", rest, True)
        if current is not None:
            pending.append(current)
        return pending

    def parse_raw(self, raw: Any) -> ParsedConversation:
        text = load_text(raw)
        drafts: list[DraftMessage] = []
        for item in self._split(text):
            content = item.content.strip()
            if item.is_system:
                drafts.append(DraftMessage(sender="System", content=content, timestamp=item.timestamp, type="system"))
                continue
            is_unsent = content.lower() in DELETED_TEXTS
            is_media = is_media_content(content)
            msg_type, content, has_link = classify_content(
                "" if is_media else content, has_attachment=is_media
            )
            drafts.append(
                DraftMessage(
                    sender=item.sender,
                    content=content,
                    timestamp=item.timestamp,
                    type=msg_type,
                    has_media=is_media,
                    has_link=has_link,
                    is_unsent=is_unsent,
                )
            )
        names = dict.fromkeys(d.sender for d in drafts if d.type != "system")
        title = " & ".join(names) or "WhatsApp"
        return build_conversation(self.platform, title, drafts)
