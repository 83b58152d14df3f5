"""Instagram DM JSON export adapter (same file layout as Messenger)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..models import MessageType
from .messenger import MessengerAdapter, _is_standard

_INSTAGRAM_MESSAGE_KEYS = ("is_geoblocked_for_viewer", "is_unsent_image_by_messenger_kid_parent")


def _has_instagram_markers(data: Any) -> bool:
    if not _is_standard(data):
        return False
    for msg in data.get("messages", []):
        if not isinstance(msg, Mapping):
            continue
        if any(key in msg for key in _INSTAGRAM_MESSAGE_KEYS):
            return True
        share = msg.get("share")
        if isinstance(share, Mapping) and "original_content_owner" in share:
            return True
    return False


class InstagramAdapter(MessengerAdapter):
    platform = "instagram"

    def matches(self, data: Any) -> bool:
        parts = data if isinstance(data, list) else [data]
        return bool(parts) and any(_has_instagram_markers(p) for p in parts)

    def default_title(self, names: list[str]) -> str:
        return " & ".join(names)

    def classify_type(self, msg: Mapping[str, Any]) -> MessageType | None:
        if msg.get("call_duration") is not None:
            return "call"
        return super().classify_type(msg)
