"""Typed server-sent events and their wire encoding.

Application events are serialized by :func:`encode` as ``data: <json>``
frames. Heartbeats are SSE comment lines with no payload, so consumers that
only read ``data:`` lines never see them.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict

HEARTBEAT = ":\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class ProgressEvent(_Event):
    type: Literal["progress"] = "progress"
    status: str
    stage: str | None = None


class CompleteEvent(_Event):
    type: Literal["complete"] = "complete"
    result: dict[str, Any]


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: str


StreamEvent = Union[ProgressEvent, CompleteEvent, ErrorEvent]


def encode(event: StreamEvent) -> str:
    """Serialize ``event`` as one SSE ``data:`` frame."""
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))
