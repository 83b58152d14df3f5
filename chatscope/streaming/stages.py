"""Sequential AI stages run inside a streaming session.

``recon`` reads the samples and returns a briefing of date ranges and topics
worth a closer look. ``deep_recon`` receives samples re-drawn with that
briefing and refines it. ``main`` produces the final analysis. A request may
select any subset; the stages always run in this order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ..exceptions import AIResponseError
from ..metrics import QuantitativeAnalysis
from ..models import ParsedConversation
from ..sampling import AnalysisSamples, Briefing, FlaggedDateRange, FlaggedTopic, sample
from ..settings import Settings
from .ai import AIClient
from .session import StreamingSession

logger = logging.getLogger(__name__)

STAGE_ORDER = ("recon", "deep_recon", "main")

STAGE_STATUS = {
    "recon": "Scanning the conversation for key periods...",
    "deep_recon": "Looking closer at the flagged periods...",
    "main": "Writing the analysis...",
}

STAGE_PROMPTS = {
    "recon": (
        "You are reviewing a sampled chat conversation. Identify the periods and "
        "topics that deserve a closer look. Reply with a JSON object with keys "
        '"flaggedDateRanges" (list of {start, end, reason, priority}, dates as '
        'YYYY-MM or YYYY-MM-DD) and "topicsToInvestigate" (list of {topic, '
        "searchKeywords, reason, priority})."
    ),
    "deep_recon": (
        "The samples now include messages from the periods flagged earlier. "
        "Refine the briefing: keep what the messages support, drop what they do "
        "not and add anything missed. Reply with the same JSON shape."
    ),
    "main": (
        "Analyse the relationship dynamics in this conversation using the samples "
        "and the quantitative summary. Reply with a single JSON object."
    ),
}


def ordered_stages(selected: Iterable[str] | None) -> tuple[str, ...]:
    """Return the selected stages in execution order.

    ``None`` selects every stage. Unknown names raise ``ValueError``.
    """
    if selected is None:
        return STAGE_ORDER
    chosen = set(selected)
    unknown = chosen.difference(STAGE_ORDER)
    if unknown:
        raise ValueError(f"Unknown stage(s): {', '.join(sorted(unknown))}")
    if not chosen:
        raise ValueError("At least one stage is required")
    return tuple(stage for stage in STAGE_ORDER if stage in chosen)


def briefing_from_payload(payload: dict[str, Any]) -> Briefing:
    """Build a briefing from a recon reply, skipping malformed entries."""
    ranges_raw = payload.get("flaggedDateRanges")
    topics_raw = payload.get("topicsToInvestigate")
    if ranges_raw is None and topics_raw is None:
        raise AIResponseError("reply has no flaggedDateRanges or topicsToInvestigate")
    if any(value is not None and not isinstance(value, list) for value in (ranges_raw, topics_raw)):
        raise AIResponseError("briefing fields must be lists")

    ranges: list[FlaggedDateRange] = []
    for item in ranges_raw or []:
        try:
            ranges.append(FlaggedDateRange.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed date range %r", item)
    topics: list[FlaggedTopic] = []
    for item in topics_raw or []:
        try:
            topics.append(FlaggedTopic.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed topic %r", item)
    return Briefing(flagged_date_ranges=tuple(ranges), topics=tuple(topics))


@dataclass(frozen=True)
class AnalysisInput:
    conversation: ParsedConversation
    quantitative: QuantitativeAnalysis
    samples: AnalysisSamples
    settings: Settings
    briefing: Briefing | None = None


class AnalysisPipeline:
    """Runs the selected stages against ``ai`` and completes the session."""

    def __init__(self, ai: AIClient, data: AnalysisInput, stages: Iterable[str] | None = None) -> None:
        self.ai = ai
        self.data = data
        self.stages = ordered_stages(stages)

    def _context(self, samples: AnalysisSamples, briefing: Briefing | None) -> dict[str, Any]:
        conversation = self.data.conversation
        return {
            "title": conversation.title,
            "platform": conversation.platform,
            "participants": conversation.participant_names,
            "quantitativeContext": samples.quantitative_context,
            "bursts": [
                b.model_dump(mode="json", by_alias=True) for b in self.data.quantitative.patterns.bursts
            ],
            "samples": samples.model_dump(mode="json", by_alias=True, exclude={"quantitative_context"}),
            "briefing": briefing.model_dump(mode="json", by_alias=True) if briefing else None,
        }

    async def __call__(self, session: StreamingSession) -> None:
        samples, briefing = self.data.samples, self.data.briefing
        analysis: dict[str, Any] | None = None
        for stage in self.stages:
            if session.aborted.is_set():
                logger.info("Analysis %s stopped before stage %s", session.analysis_id, stage)
                return
            session.progress(STAGE_STATUS[stage], stage)
            payload = await self.ai.complete(stage, STAGE_PROMPTS[stage], self._context(samples, briefing))
            if stage == "main":
                analysis = payload
                continue
            briefing = briefing_from_payload(payload)
            samples = await run_in_threadpool(
                sample,
                self.data.conversation,
                self.data.quantitative,
                briefing,
                settings=self.data.settings,
            )

        result: dict[str, Any] = {
            "analysisId": session.analysis_id,
            "stages": list(self.stages),
            "sampledMessages": len(samples.overview) + len(samples.dynamics),
        }
        if briefing is not None:
            result["briefing"] = briefing.model_dump(mode="json", by_alias=True)
        if analysis is not None:
            result["analysis"] = analysis
        session.complete(result)
