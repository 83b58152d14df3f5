"""AI collaborator used by the analysis stages.

:class:`OpenAIClient` calls the chat completions API in JSON mode when
``OPENAI_API_KEY`` is configured. Without a key :class:`FallbackAIClient`
answers deterministically from the samples and metrics so the service stays
usable in development and CI without network access.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from ..exceptions import AICallError, AIResponseError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def parse_ai_json(text: str | None) -> dict[str, Any]:
    """Decode a model reply into a JSON object.

    Replies wrapped in a Markdown code fence are accepted. Anything that does
    not decode to an object raises :class:`AIResponseError`.
    """
    if not text or not text.strip():
        raise AIResponseError("empty response")
    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise AIResponseError(f"invalid JSON: {exc.msg}") from exc
    except RecursionError:
        raise AIResponseError("invalid JSON: nested too deeply") from None
    if not isinstance(data, dict):
        raise AIResponseError(f"expected a JSON object, got {type(data).__name__}")
    return data


class AIClient(Protocol):
    async def complete(self, stage: str, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        """Run one stage and return its structured result, or raise ``UpstreamError``."""
        ...


class OpenAIClient:
    """Chat completions in JSON mode; one request per stage."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=max_retries)

    async def complete(self, stage: str, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                temperature=0.3,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": json.dumps(context, ensure_ascii=False)},
                ],
            )
        except OpenAIError as exc:
            logger.warning("OpenAI call for stage %s failed: %s", stage, exc)
            raise AICallError(str(exc)) from exc
        if not completion.choices:
            raise AIResponseError("no choices in completion")
        return parse_ai_json(completion.choices[0].message.content)


class FallbackAIClient:
    """Deterministic stand-in used when no LLM key is configured."""

    async def complete(self, stage: str, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        if stage in ("recon", "deep_recon"):
            ranges = []
            for burst in (context.get("bursts") or [])[:3]:
                ranges.append(
                    {
                        "start": burst["startDate"],
                        "end": burst["endDate"],
                        "reason": f"Activity burst of {burst['messageCount']} messages",
                        "priority": "high",
                    }
                )
            briefing = context.get("briefing") or {}
            return {
                "flaggedDateRanges": ranges or briefing.get("flaggedDateRanges", []),
                "topicsToInvestigate": briefing.get("topicsToInvestigate", []),
            }
        samples = context.get("samples") or {}
        return {
            "summary": context.get("quantitativeContext", ""),
            "participants": context.get("participants", []),
            "sampledMessages": len(samples.get("overview", [])),
            "usedLlm": False,
        }


def default_ai_client(model: str) -> AIClient:
    """OpenAI when ``OPENAI_API_KEY`` is set, the deterministic fallback otherwise."""
    if os.getenv("OPENAI_API_KEY"):
        return OpenAIClient(model=model)
    logger.info("OPENAI_API_KEY not set; using deterministic analysis fallback")
    return FallbackAIClient()
