"""Runtime configuration loaded from environment variables.

Values are read once and cached; tests that change the environment call
:func:`reset_settings_cache` afterwards.
"""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigurationError


@dataclasses.dataclass(frozen=True)
class Settings:
    """Pipeline and HTTP configuration."""

    timezone: str = "UTC"
    session_gap_ms: int = 6 * 60 * 60 * 1000  # 6 hours
    late_night_start: int = 22
    late_night_end: int = 4
    heartbeat_ms: int = 15_000
    max_body_bytes: int = 5 * 1024 * 1024
    rate_limit_max: int = 5
    rate_limit_window_ms: int = 10 * 60 * 1000
    result_ttl_seconds: int = 3600
    openai_model: str = "gpt-4o-mini"
    brand_name: str = "ChatScope"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_late_night(self, hour: int) -> bool:
        if self.late_night_start <= self.late_night_end:
            return self.late_night_start <= hour < self.late_night_end
        return hour >= self.late_night_start or hour < self.late_night_end


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with defaults suitable for development."""

    timezone = os.getenv("CHATSCOPE_TIMEZONE", "UTC")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone {timezone!r}") from exc

    gap_hours = _float_env("CHATSCOPE_SESSION_GAP_HOURS", 6.0)
    late_start = _int_env("CHATSCOPE_LATE_NIGHT_START", 22)
    late_end = _int_env("CHATSCOPE_LATE_NIGHT_END", 4)
    for name, hour in (("CHATSCOPE_LATE_NIGHT_START", late_start), ("CHATSCOPE_LATE_NIGHT_END", late_end)):
        if not 0 <= hour <= 23:
            raise ConfigurationError(f"{name} must be an hour between 0 and 23")

    return Settings(
        timezone=timezone,
        session_gap_ms=int(gap_hours * 60 * 60 * 1000),
        late_night_start=late_start,
        late_night_end=late_end,
        heartbeat_ms=_int_env("SSE_HEARTBEAT_MS", 15_000),
        max_body_bytes=_int_env("ANALYZE_MAX_BODY_BYTES", 5 * 1024 * 1024),
        rate_limit_max=_int_env("ANALYZE_RATE_LIMIT", 5),
        rate_limit_window_ms=_int_env("ANALYZE_RATE_WINDOW_MS", 10 * 60 * 1000),
        result_ttl_seconds=_int_env("RESULT_TTL_SECONDS", 3600),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        brand_name=os.getenv("BRAND_NAME", "ChatScope"),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
