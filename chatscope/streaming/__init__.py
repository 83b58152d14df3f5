"""Streaming orchestration for ``/api/analyze``."""

from .ai import AIClient, FallbackAIClient, OpenAIClient, default_ai_client, parse_ai_json
from .rate_limit import RateLimiter, RateLimitResult, rate_limit
from .session import ResultStore, StreamingSession
from .sse import HEARTBEAT, SSE_HEADERS, CompleteEvent, ErrorEvent, ProgressEvent, encode
from .stages import STAGE_ORDER, AnalysisInput, AnalysisPipeline, briefing_from_payload, ordered_stages

__all__ = [
    "HEARTBEAT",
    "SSE_HEADERS",
    "STAGE_ORDER",
    "AIClient",
    "AnalysisInput",
    "AnalysisPipeline",
    "CompleteEvent",
    "ErrorEvent",
    "FallbackAIClient",
    "OpenAIClient",
    "ProgressEvent",
    "RateLimitResult",
    "RateLimiter",
    "ResultStore",
    "StreamingSession",
    "briefing_from_payload",
    "default_ai_client",
    "encode",
    "ordered_stages",
    "parse_ai_json",
    "rate_limit",
]
