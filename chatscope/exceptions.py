"""Exception hierarchy for ChatScope.

Input problems are rejected before a stream opens; insufficient-data and
upstream problems surface as ``error`` events inside the stream.
"""

from __future__ import annotations

from collections.abc import Mapping


class ChatScopeError(Exception):
    """Base class for all ChatScope errors."""


class ConfigurationError(ChatScopeError):
    """Raised when an environment setting cannot be interpreted."""


class RequestRejected(ChatScopeError):
    """An HTTP request failed validation before any streaming began."""

    def __init__(
        self,
        status_code: int,
        error: str,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.headers = dict(headers or {})


class InsufficientDataError(ChatScopeError):
    """Too few eligible messages remain for AI analysis."""

    def __init__(self, eligible: int, minimum: int) -> None:
        super().__init__(
            f"Not enough messages to analyse: {eligible} eligible, at least {minimum} required."
        )
        self.eligible = eligible
        self.minimum = minimum


class UnknownMetricError(ChatScopeError, ValueError):
    """Percentile lookup was asked for a metric without a threshold table."""


class UpstreamError(ChatScopeError):
    """Base class for failures of the AI collaborator."""

    #: Message that is safe to show to the end user.
    user_message = "The analysis service failed. Please try again."


class AICallError(UpstreamError):
    """The AI call itself failed (network, provider error, timeout)."""


class AIResponseError(UpstreamError):
    """The AI call returned a payload that could not be interpreted."""

    user_message = "The analysis service returned an unreadable response. Please try again."
