"""FastAPI application wiring for ChatScope.

- Configures logging, optional CORS, Prometheus metrics and the per-IP rate
  limit for ``/api/analyze``.
- ``/api/parse`` and ``/api/quantitative`` turn an export into the canonical
  conversation and its metrics in one response.
- ``/api/analyze`` validates the request, runs parsing, metrics and sampling
  up front and then streams the AI stages as server-sent events. Results of
  streams whose client went away can be fetched from
  ``/api/analyze/results/{analysis_id}`` using the id sent in the
  ``X-Analysis-Id`` header.
- Uses OpenAI when ``OPENAI_API_KEY`` is configured, falling back to a
  deterministic summary otherwise.
- Parsing, metrics and sampling are CPU-bound and run in the threadpool so
  heartbeats keep flowing for other streams.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from typing import Any, TypeVar
from uuid import uuid4

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from . import __version__, build_info
from .app_logging import init_logging
from .exceptions import InsufficientDataError, RequestRejected
from .metrics import compute
from .models import PLATFORMS, ParsedConversation
from .parsers import parse
from .percentiles import percentiles_for
from .sampling import sample
from .schemas import AnalyzeRequest, ExportRequest
from .settings import Settings, get_settings
from .streaming import (
    SSE_HEADERS,
    AIClient,
    AnalysisInput,
    AnalysisPipeline,
    RateLimiter,
    ResultStore,
    StreamingSession,
    default_ai_client,
    rate_limit,
)

load_dotenv()

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:3]:
        location = ".".join(str(p) for p in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


async def read_body(request: Request, max_bytes: int) -> bytes:
    """Read the request body, rejecting it as soon as it grows past ``max_bytes``."""
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            size = int(declared)
        except ValueError:
            raise RequestRejected(400, "Invalid Content-Length header.") from None
        if size > max_bytes:
            raise RequestRejected(413, "Request body too large.")
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        # Chunked uploads carry no Content-Length
        if len(body) > max_bytes:
            raise RequestRejected(413, "Request body too large.")
    return bytes(body)


async def read_json_body(request: Request, model: type[M], max_bytes: int) -> M:
    """Read and validate a JSON body, rejecting oversized payloads before parsing."""
    body = await read_body(request, max_bytes)
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError):
        raise RequestRejected(400, "Invalid JSON.") from None
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise RequestRejected(400, f"Validation error: {_format_validation_error(exc)}") from None


def _parse_export(req: ExportRequest, settings: Settings) -> ParsedConversation:
    conversation = parse(req.export, req.platform, tz=settings.tz)
    if conversation.is_empty:
        raise RequestRejected(400, "Could not read any messages from the export.")
    if req.title:
        conversation = dataclasses.replace(conversation, title=req.title)
    return conversation


def _failing(error: Exception):
    """Pipeline that fails immediately, reported as the stream's error event."""

    async def pipeline(session: StreamingSession) -> None:
        raise error

    return pipeline


def _summary(conversation: ParsedConversation) -> dict[str, Any]:
    data = conversation.to_dict()
    data.pop("messages", None)
    return data


def _quantitative_payload(req: ExportRequest, settings: Settings) -> dict[str, Any]:
    conversation = _parse_export(req, settings)
    analysis = compute(conversation, settings)
    return {
        "conversation": _summary(conversation),
        "quantitative": analysis.model_dump(mode="json", by_alias=True),
        "percentiles": {k: v.to_dict() for k, v in percentiles_for(conversation, analysis).items()},
    }


def create_app(
    settings: Settings | None = None,
    *,
    limiter: RateLimiter | None = None,
    ai_client: AIClient | None = None,
) -> FastAPI:
    """Build the application; tests inject settings, limiter and AI client."""

    settings = settings or get_settings()

    app = FastAPI(title=settings.brand_name, version=__version__)
    init_logging(app)
    app.state.settings = settings
    app.state.rate_limiter = limiter or rate_limit(settings.rate_limit_max, settings.rate_limit_window_ms)
    app.state.ai_client = ai_client or default_ai_client(settings.openai_model)
    app.state.results = ResultStore(settings.result_ttl_seconds)

    @app.exception_handler(RequestRejected)
    async def _request_rejected(request: Request, exc: RequestRejected) -> JSONResponse:
        return JSONResponse({"error": exc.error}, status_code=exc.status_code, headers=exc.headers)

    # Optional CORS for a browser frontend
    ui_origins = os.getenv("ADMIN_UI_ORIGINS")
    if ui_origins:
        origins = [o.strip() for o in ui_origins.split(",") if o.strip()]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Analysis-Id", "X-Request-Id"],
        )

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/api/metrics")

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return build_info()

    @app.get("/api/config")
    async def config():
        """Expose selected frontend configuration."""
        return {
            "BRAND_NAME": settings.brand_name,
            "MAX_BODY_BYTES": settings.max_body_bytes,
            "TIMEZONE": settings.timezone,
            "PLATFORMS": list(PLATFORMS),
        }

    @app.post("/api/parse")
    async def parse_export(request: Request):
        """Return the canonical conversation for an uploaded export."""
        req = await read_json_body(request, ExportRequest, settings.max_body_bytes)
        conversation = await run_in_threadpool(_parse_export, req, settings)
        return conversation.to_dict()

    @app.post("/api/quantitative")
    async def quantitative(request: Request):
        """Return conversation metadata, quantitative metrics and percentiles."""
        req = await read_json_body(request, ExportRequest, settings.max_body_bytes)
        return await run_in_threadpool(_quantitative_payload, req, settings)

    @app.post("/api/analyze")
    async def analyze(request: Request):
        """Stream an AI analysis of an export as server-sent events.

        Events are ``data: {"type": "progress" | "complete" | "error", ...}``
        frames; ``:`` comment lines are heartbeats. The ``X-Analysis-Id``
        response header names the stored result.
        """
        verdict = request.app.state.rate_limiter.check(get_client_ip(request))
        if not verdict.allowed:
            raise RequestRejected(
                429,
                "Too many requests. Please try again later.",
                {"Retry-After": str(verdict.retry_after)},
            )
        req = await read_json_body(request, AnalyzeRequest, settings.max_body_bytes)

        conversation = await run_in_threadpool(_parse_export, req, settings)
        analysis = await run_in_threadpool(compute, conversation, settings)
        analysis_id = uuid4().hex
        logger.info(
            "Analysis %s started for request %s",
            analysis_id,
            getattr(request.state, "request_id", None),
        )
        session = StreamingSession(
            heartbeat_interval=settings.heartbeat_ms / 1000,
            analysis_id=analysis_id,
            is_disconnected=request.is_disconnected,
            results=request.app.state.results,
        )

        try:
            samples = await run_in_threadpool(sample, conversation, analysis, req.briefing, settings=settings)
        except InsufficientDataError as exc:
            logger.info("Analysis %s rejected: %s", analysis_id, exc)
            pipeline = _failing(exc)
        else:
            pipeline = AnalysisPipeline(
                request.app.state.ai_client,
                AnalysisInput(
                    conversation=conversation,
                    quantitative=analysis,
                    samples=samples,
                    settings=settings,
                    briefing=req.briefing,
                ),
                req.stages,
            )

        return StreamingResponse(
            session.run(pipeline),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, "X-Analysis-Id": analysis_id},
        )

    @app.get("/api/analyze/results/{analysis_id}")
    async def analyze_result(analysis_id: str):
        """Return the stored outcome of an analysis, if still retained."""
        stored = app.state.results.get(analysis_id)
        if stored is None:
            raise RequestRejected(404, "Result not found.")
        return stored.to_dict()


    return app


app = create_app()
