"""Application and access logging setup.

- JSON formatter (opt-in via LOG_JSON) or a human-readable formatter.
- Timed rotation of ``chatscope.log`` and ``access.log`` honoring retention
  and timezone options.
- An HTTP middleware writing one structured access line per request, with an
  ``X-Request-Id`` echoed back to the client. Credentials and chat content
  are scrubbed before anything reaches the log.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER = "chatscope"
ACCESS_LOGGER = "uvicorn.access"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "password",
    "token",
    "api_key",
}

# Chat content is private; requests only log its size.
CONTENT_FIELDS = {"export", "content", "text", "messages"}


def _scrub(data: object) -> object:
    """Recursively mask credentials and chat content in dicts and lists."""

    if isinstance(data, dict):
        scrubbed: dict[Any, object] = {}
        for key, value in data.items():
            lowered = key.lower() if isinstance(key, str) else key
            if lowered in SENSITIVE_FIELDS:
                scrubbed[key] = "***"
            elif lowered in CONTENT_FIELDS:
                scrubbed[key] = f"<{len(json.dumps(value, default=str))} chars>"
            else:
                scrubbed[key] = _scrub(value)
        return scrubbed
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def _request_id(request: Request) -> str:
    supplied = request.headers.get("X-Request-Id", "")
    return supplied if _REQUEST_ID_RE.match(supplied) else uuid4().hex


def _install_access_logging(app: FastAPI) -> None:
    """Install the access logging middleware.

    Health and metrics probes are not logged. The request id is stored on
    ``request.state`` so handlers can key detached results by it.
    """

    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    skip_paths = {"/api/health", "/api/metrics"}
    access_logger = logging.getLogger(ACCESS_LOGGER)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = _request_id(request)
        request.state.request_id = request_id
        if request.url.path in skip_paths:
            return await call_next(request)

        start = time.time()

        body_content = None
        if log_request_bodies and request.method in ("POST", "PUT", "PATCH"):
            body_bytes = await request.body()

            async def receive() -> dict:
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]

            if body_bytes:
                try:
                    body_content = _scrub(json.loads(body_bytes))
                except (ValueError, RecursionError):
                    body_content = f"<{len(body_bytes)} bytes>"

        response = await call_next(request)

        process_time_ms = (time.time() - start) * 1000
        client = request.client
        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and client is not None:
            client_ip = client.host

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round(process_time_ms, 2),
            "client_ip": client_ip,
            "headers": _scrub(dict(request.headers)),
        }
        if body_content is not None:
            log_data["body"] = body_content

        response.headers["X-Request-Id"] = request_id

        access_logger.info(json.dumps(log_data, default=str, ensure_ascii=False))
        return response


def _rotating_handler(
    log_dir: str, filename: str, retention_days: int, rotate_utc: bool, formatter: logging.Formatter
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=retention_days,
        utc=rotate_utc,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Initialise application and access loggers."""

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)

    formatter = _get_formatter(log_json)
    log_level = getattr(logging, log_level_str, logging.INFO)

    app_logger = logging.getLogger(APP_LOGGER)
    if not app_logger.handlers:
        app_logger.addHandler(
            _rotating_handler(log_dir, "chatscope.log", retention_days, rotate_utc, formatter)
        )
    app_logger.setLevel(log_level)

    access_logger = logging.getLogger(ACCESS_LOGGER)
    access_logger.handlers.clear()
    access_logger.addHandler(
        _rotating_handler(log_dir, "access.log", retention_days, rotate_utc, formatter)
    )
    access_logger.setLevel(log_level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
