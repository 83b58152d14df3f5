"""Per-request streaming session.

A session owns the outgoing frame queue, the heartbeat task and the abort
flag. The analysis pipeline runs as a separate task; the HTTP response
iterates :meth:`StreamingSession.run`. When the client goes away the session
is aborted: no further frames are written and the heartbeat stops, while the
pipeline task keeps running detached until its current AI call returns.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..exceptions import InsufficientDataError, UpstreamError
from .sse import HEARTBEAT, CompleteEvent, ErrorEvent, ProgressEvent, StreamEvent, encode, is_terminal

logger = logging.getLogger(__name__)

Pipeline = Callable[["StreamingSession"], Awaitable[None]]
DisconnectProbe = Callable[[], Awaitable[bool]]

# Strong references to pipeline tasks that outlive their response.
_RUNNING: set[asyncio.Task] = set()

_CLOSED = None


@dataclass
class StoredResult:
    status: str
    result: dict[str, Any] | None = None
    error: str | None = None
    expires_at: float = field(default=0.0)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data


class ResultStore:
    """In-memory outcomes of analyses, kept for ``ttl_seconds``.

    Lets a client that disconnected mid-stream fetch what the pipeline
    produced after it left. Keys are server-generated analysis ids and a
    live entry is never replaced. Expired entries are dropped on access.
    """

    def __init__(self, ttl_seconds: float) -> None:
        self.ttl_seconds = ttl_seconds
        self._items: dict[str, StoredResult] = {}

    def put(
        self,
        analysis_id: str,
        status: str,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """Store an outcome; returns ``False`` if ``analysis_id`` already holds one."""
        self._purge()
        if analysis_id in self._items:
            logger.warning("Refusing to overwrite stored result %s", analysis_id)
            return False
        self._items[analysis_id] = StoredResult(
            status=status,
            result=result,
            error=error,
            expires_at=time.monotonic() + self.ttl_seconds,
        )
        return True

    def get(self, analysis_id: str) -> StoredResult | None:
        self._purge()
        return self._items.get(analysis_id)

    def _purge(self) -> None:
        now = time.monotonic()
        for key in [k for k, v in self._items.items() if v.expires_at <= now]:
            del self._items[key]

    def __len__(self) -> int:
        self._purge()
        return len(self._items)


class StreamingSession:
    """Frames for one ``/api/analyze`` response."""

    def __init__(
        self,
        *,
        heartbeat_interval: float,
        analysis_id: str = "",
        is_disconnected: DisconnectProbe | None = None,
        results: ResultStore | None = None,
    ) -> None:
        self.heartbeat_interval = heartbeat_interval
        self.analysis_id = analysis_id
        self.aborted = asyncio.Event()
        self._is_disconnected = is_disconnected
        self._results = results
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._heartbeat_task: asyncio.Task | None = None
        self._closed = False
        self._finished = False
        self._stored = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        """Whether a ``complete`` or ``error`` event has been queued."""
        return self._finished

    def send(self, event: StreamEvent) -> bool:
        """Queue ``event``; returns ``False`` once aborted, closed or finished."""
        if self._closed or self._finished or self.aborted.is_set():
            return False
        self._queue.put_nowait(encode(event))
        if is_terminal(event):
            self._finished = True
            self.close()
        return True

    def progress(self, status: str, stage: str | None = None) -> bool:
        return self.send(ProgressEvent(status=status, stage=stage))

    def _store(self, status: str, **outcome: Any) -> None:
        self._stored = True
        if self._results is not None and self.analysis_id:
            self._results.put(self.analysis_id, status, **outcome)

    def complete(self, result: dict[str, Any]) -> bool:
        if self._finished:
            return False
        self._store("complete", result=result)
        return self.send(CompleteEvent(result=result))

    def fail(self, message: str) -> bool:
        if self._finished:
            return False
        self._store("error", error=message)
        return self.send(ErrorEvent(error=message))

    def abort(self) -> None:
        if not self.aborted.is_set():
            logger.info("Client disconnected from analysis %s", self.analysis_id)
        self.aborted.set()
        self.close()

    def close(self) -> None:
        """Stop the heartbeat and end the frame stream. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
        self._queue.put_nowait(_CLOSED)

    async def _heartbeat(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self._closed:
                break
            self._queue.put_nowait(HEARTBEAT)

    async def _execute(self, pipeline: Pipeline) -> None:
        try:
            await pipeline(self)
        except InsufficientDataError as exc:
            self.fail(str(exc))
        except UpstreamError as exc:
            if self.aborted.is_set():
                logger.warning("Analysis %s failed after disconnect: %s", self.analysis_id, exc)
                self._store("error", error=exc.user_message)
            else:
                logger.warning("Analysis %s failed: %s", self.analysis_id, exc)
                self.fail(exc.user_message)
        except Exception:
            logger.exception("Analysis %s crashed", self.analysis_id)
            self.fail("Analysis failed. Please try again.")
        else:
            if self.aborted.is_set():
                if not self._stored:
                    self._store("aborted")
            elif not self._finished:
                self.fail("Analysis ended without a result.")
        finally:
            self.close()

    async def run(self, pipeline: Pipeline) -> AsyncIterator[str]:
        """Start ``pipeline`` and heartbeats, yielding SSE frames until the end."""
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        task = asyncio.create_task(self._execute(pipeline))
        _RUNNING.add(task)
        task.add_done_callback(_RUNNING.discard)
        try:
            while True:
                frame = await self._queue.get()
                if frame is _CLOSED or self.aborted.is_set():
                    break
                if self._is_disconnected is not None and await self._is_disconnected():
                    self.abort()
                    break
                yield frame
        finally:
            # Leaving early means the transport went away or a write failed.
            if not self._finished:
                self.abort()
            self.close()
