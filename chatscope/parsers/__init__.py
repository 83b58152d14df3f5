"""Platform adapter registry and the ``parse`` entry point."""

from __future__ import annotations

import json
import logging
from datetime import tzinfo
from typing import Any

from ..models import ParsedConversation
from ..settings import get_settings
from .base import PlatformAdapter, build_conversation, empty_conversation
from .discord import DiscordAdapter
from .instagram import InstagramAdapter
from .messenger import MessengerAdapter, decode_fb_string
from .telegram import TelegramAdapter
from .whatsapp import WhatsAppAdapter

logger = logging.getLogger(__name__)

_REGISTRY: dict[str, type[PlatformAdapter]] = {}

# Instagram must be tried before Messenger, which accepts the same layout.
_DETECTION_ORDER = ("whatsapp", "telegram", "discord", "instagram", "messenger")


def register_adapter(adapter: type[PlatformAdapter]) -> None:
    """Register an adapter class in the global registry."""
    _REGISTRY[adapter.platform] = adapter


def get_adapter(name: str) -> type[PlatformAdapter]:
    """Retrieve an adapter class for ``name`` or raise ``KeyError``."""
    normalized = name.lower()
    if normalized not in _REGISTRY:
        raise KeyError(f"Platform '{name}' is not supported")
    return _REGISTRY[normalized]


def _decode(raw: Any) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8-sig")
    if isinstance(raw, str):
        stripped = raw.lstrip("\ufeff").lstrip()
        if stripped.startswith(("{", "[")):
            try:
                return json.loads(stripped)
            except (json.JSONDecodeError, RecursionError):
                return raw
    return raw


def detect_platform(raw: Any, *, tz: tzinfo | None = None) -> str | None:
    """Guess the platform of ``raw`` from its shape, or ``None``."""
    data = _decode(raw)
    zone = tz or get_settings().tz
    for name in _DETECTION_ORDER:
        if _REGISTRY[name](tz=zone).matches(data):
            return name
    return None


def parse(
    raw: Any,
    platform_hint: str | None = None,
    *,
    tz: tzinfo | None = None,
) -> ParsedConversation:
    """Convert a raw export into a :class:`ParsedConversation`.

    Malformed or empty input never raises; it yields a conversation with no
    participants and no messages so callers can apply one
    insufficient-data policy. An unknown ``platform_hint`` raises
    ``KeyError``.
    """

    zone = tz or get_settings().tz
    data = _decode(raw)
    platform = platform_hint.lower() if platform_hint else detect_platform(data, tz=zone)
    if platform is None:
        logger.warning("Could not detect the platform of the uploaded export")
        return empty_conversation("unknown", "Unknown")

    adapter = get_adapter(platform)(tz=zone)
    try:
        conversation = adapter.parse_raw(data)
    except (ValueError, TypeError, KeyError, AttributeError, OverflowError, RecursionError) as exc:
        logger.warning("Malformed %s export: %s", platform, exc)
        return empty_conversation(platform)
    logger.info(
        "Parsed %s export: %d messages, %d participants",
        platform,
        len(conversation.messages),
        len(conversation.participants),
    )
    return conversation


# Pre-register built-in adapters
register_adapter(MessengerAdapter)
register_adapter(InstagramAdapter)
register_adapter(WhatsAppAdapter)
register_adapter(TelegramAdapter)
register_adapter(DiscordAdapter)

__all__ = [
    "PlatformAdapter",
    "build_conversation",
    "decode_fb_string",
    "detect_platform",
    "get_adapter",
    "parse",
    "register_adapter",
]
