import asyncio
import json
import logging
import pathlib
import sys
from datetime import datetime, timezone

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from chatscope.exceptions import AICallError
from chatscope.models import Reaction
from chatscope.parsers.base import DraftMessage, build_conversation
from chatscope.settings import Settings, reset_settings_cache

FIXTURES = pathlib.Path(__file__).resolve().parent / "fixtures"
MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def ms(year, month, day, hour=0, minute=0, second=0) -> int:
    """UTC epoch milliseconds."""
    return int(datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc).timestamp() * 1000)


def fixture_text(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def make_conversation(rows, *, platform="whatsapp", title="Test chat"):
    """Build a conversation from ``(sender, content, timestamp, **fields)`` rows."""
    drafts = []
    for row in rows:
        sender, content, timestamp, *rest = row
        fields = rest[0] if rest else {}
        reactions = [Reaction(**r) for r in fields.pop("reactions", [])]
        drafts.append(
            DraftMessage(sender=sender, content=content, timestamp=timestamp, reactions=reactions, **fields)
        )
    return build_conversation(platform, title, drafts)


def alternating(count: int, *, start: int, step_ms: int, names=("Ania", "Bartek")):
    return [
        (names[i % len(names)], f"message number {i} about things", start + i * step_ms)
        for i in range(count)
    ]


def whatsapp_export(count: int, *, names=("Ania", "Bartek")) -> str:
    """Android-style export with ``count`` alternating messages, one every 30 minutes."""
    lines = []
    for i in range(count):
        minutes = i * 30
        day = 1 + minutes // (24 * 60)
        hour = (minutes // 60) % 24
        minute = minutes % 60
        lines.append(f"{day:02d}.03.2024, {hour:02d}:{minute:02d} - {names[i % len(names)]}: wiadomość {i}")
    return "\n".join(lines) + "\n"


def sse_events(body: str):
    """Split an SSE body into decoded ``data:`` events and a heartbeat count."""
    events, heartbeats = [], 0
    for frame in body.split("\n\n"):
        if not frame:
            continue
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: ") :]))
        elif frame == ":":
            heartbeats += 1
    return events, heartbeats


class ScriptedAI:
    """AI client returning canned replies per stage."""

    def __init__(self, replies=None, *, delay=0.0, fail_stage=None, gate=None):
        self.replies = replies or {}
        self.delay = delay
        self.fail_stage = fail_stage
        self.gate = gate
        self.calls = []

    async def complete(self, stage, prompt, context):
        self.calls.append(stage)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if stage == self.fail_stage:
            raise AICallError("provider unavailable")
        if stage in self.replies:
            return self.replies[stage]
        if stage == "main":
            return {"summary": f"{len(context['samples']['overview'])} messages reviewed"}
        return {"flaggedDateRanges": [], "topicsToInvestigate": []}


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings():
    return Settings()


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def app_factory(monkeypatch, tmp_path):
    from chatscope.main import create_app

    def _create_app(settings=None, *, limiter=None, ai_client=None, log_request_bodies=False):
        """Create the application with logging pointed at a temp dir."""
        monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        _clear_handlers("chatscope")
        _clear_handlers("uvicorn.access")
        return create_app(settings or Settings(), limiter=limiter, ai_client=ai_client or ScriptedAI())

    yield _create_app
    _clear_handlers("chatscope")
    _clear_handlers("uvicorn.access")
