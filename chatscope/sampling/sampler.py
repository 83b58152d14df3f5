"""Deterministic message sampling for language-model analysis.

Selection never uses randomness. Within a block of messages, ``k`` items are
picked at positions ``floor(i * (n - 1) / (k - 1))`` so the first and last
message are always kept; across months the budget is split in proportion to
each month's volume, with at least one message per month.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import datetime, tzinfo
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..exceptions import InsufficientDataError
from ..metrics.helpers import count_words
from ..metrics.schemas import QuantitativeAnalysis
from ..models import ParsedConversation, UnifiedMessage
from ..settings import Settings, get_settings
from .briefing import Briefing
from .context import build_quantitative_context

logger = logging.getLogger(__name__)

MIN_ELIGIBLE = 10
OVERVIEW_CAP = 250
DYNAMICS_CAP = 200
PER_PERSON_CAP = 150
MAX_PROFILED_PARTICIPANTS = 8
PRIORITY_SHARE = 0.7
GAP_THRESHOLD_MS = 48 * 60 * 60 * 1000
GAP_CONTEXT = 3
VOLUME_SWING = 0.3
LONGEST_SHARE = 0.05
LONGEST_MIN = 10

T = TypeVar("T")


class SimplifiedMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: str
    content: str
    timestamp: int
    index: int

    @classmethod
    def of(cls, msg: UnifiedMessage) -> SimplifiedMessage:
        return cls(sender=msg.sender, content=msg.content, timestamp=msg.timestamp, index=msg.index)


class AnalysisSamples(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    overview: list[SimplifiedMessage] = Field(default_factory=list)
    dynamics: list[SimplifiedMessage] = Field(default_factory=list)
    per_person: dict[str, list[SimplifiedMessage]] = Field(default_factory=dict)
    quantitative_context: str = ""


def even_spread(items: Sequence[T], k: int) -> list[T]:
    """Pick ``k`` items evenly by position, keeping the first and the last."""
    n = len(items)
    if k >= n:
        return list(items)
    if k <= 0:
        return []
    if k == 1:
        return [items[0]]
    return [items[(i * (n - 1)) // (k - 1)] for i in range(k)]


def _month(msg: UnifiedMessage, tz: tzinfo) -> str:
    return datetime.fromtimestamp(msg.timestamp / 1000, tz=tz).strftime("%Y-%m")


def allocate(sizes: Sequence[int], budget: int) -> list[int]:
    """Split ``budget`` across groups proportionally, at least one each.

    Leftovers go to the largest fractional shares (earlier group on ties);
    overshoot from the one-per-group floor is taken back from the largest
    quotas. Callers guarantee ``len(sizes) <= budget < sum(sizes)``.
    """
    total = sum(sizes)
    raw = [size * budget / total for size in sizes]
    quotas = [max(1, min(size, math.floor(share))) for size, share in zip(sizes, raw)]
    remaining = budget - sum(quotas)

    order = sorted(range(len(sizes)), key=lambda i: (-(raw[i] - math.floor(raw[i])), i))
    while remaining > 0:
        progressed = False
        for i in order:
            if remaining == 0:
                break
            if quotas[i] < sizes[i]:
                quotas[i] += 1
                remaining -= 1
                progressed = True
        if not progressed:
            break

    while remaining < 0:
        i = max(range(len(quotas)), key=lambda j: (quotas[j], -j))
        if quotas[i] <= 1:
            break
        quotas[i] -= 1
        remaining += 1
    return quotas


def stratified_sample(messages: Sequence[UnifiedMessage], target: int, tz: tzinfo) -> list[UnifiedMessage]:
    """Month-stratified even spread of chronological ``messages``."""
    if len(messages) <= target:
        return list(messages)
    groups: dict[str, list[UnifiedMessage]] = {}
    for msg in messages:
        groups.setdefault(_month(msg, tz), []).append(msg)
    if len(groups) > target:
        return even_spread(messages, target)
    quotas = allocate([len(g) for g in groups.values()], target)
    picked: list[UnifiedMessage] = []
    for group, quota in zip(groups.values(), quotas):
        picked.extend(even_spread(group, quota))
    return sorted(picked, key=lambda m: m.index)


def _briefing_candidates(eligible: Sequence[UnifiedMessage], briefing: Briefing, tz: tzinfo) -> set[int]:
    ranges = [r.bounds_ms(tz) for r in briefing.flagged_date_ranges]
    keywords = [k for topic in briefing.topics for k in topic.keywords()]
    found: set[int] = set()
    for msg in eligible:
        if any(start <= msg.timestamp < end for start, end in ranges):
            found.add(msg.index)
            continue
        lowered = msg.content.lower()
        if any(k in lowered for k in keywords):
            found.add(msg.index)
    return found


def _inflection_candidates(
    conversation: ParsedConversation,
    eligible: Sequence[UnifiedMessage],
    quantitative: QuantitativeAnalysis,
    tz: tzinfo,
) -> set[int]:
    messages = conversation.messages
    found = {m.index for m in eligible if m.reactions}

    for i in range(1, len(messages)):
        if messages[i].timestamp - messages[i - 1].timestamp > GAP_THRESHOLD_MS:
            for j in range(max(0, i - GAP_CONTEXT), min(len(messages), i + GAP_CONTEXT)):
                if messages[j].is_eligible:
                    found.add(messages[j].index)

    volume = quantitative.patterns.monthly_volume
    swing_months = {
        volume[i].month
        for i in range(1, len(volume))
        if volume[i - 1].total > 0
        and abs(volume[i].total - volume[i - 1].total) / volume[i - 1].total > VOLUME_SWING
    }
    if swing_months:
        found.update(m.index for m in eligible if _month(m, tz) in swing_months)

    longest = sorted(eligible, key=lambda m: -count_words(m.content))
    top = max(LONGEST_MIN, math.ceil(len(eligible) * LONGEST_SHARE))
    found.update(m.index for m in longest[:top])
    return found


def _dynamics(
    conversation: ParsedConversation,
    eligible: list[UnifiedMessage],
    quantitative: QuantitativeAnalysis,
    briefing: Briefing | None,
    tz: tzinfo,
) -> list[UnifiedMessage]:
    if len(eligible) <= DYNAMICS_CAP:
        return list(eligible)
    if briefing is not None and not briefing.is_empty:
        flagged = _briefing_candidates(eligible, briefing, tz)
    else:
        flagged = _inflection_candidates(conversation, eligible, quantitative, tz)

    pool = [m for m in eligible if m.index in flagged]
    rest = [m for m in eligible if m.index not in flagged]
    if not pool:
        return stratified_sample(eligible, DYNAMICS_CAP, tz)
    priority_budget = min(len(pool), max(math.floor(DYNAMICS_CAP * PRIORITY_SHARE), DYNAMICS_CAP - len(rest)))
    chosen = stratified_sample(pool, priority_budget, tz)
    chosen += stratified_sample(rest, DYNAMICS_CAP - len(chosen), tz)
    return sorted(chosen, key=lambda m: m.index)


def _profiled_names(conversation: ParsedConversation, quantitative: QuantitativeAnalysis) -> list[str]:
    names = conversation.participant_names
    if len(names) <= MAX_PROFILED_PARTICIPANTS:
        return names

    def volume(name: str) -> int:
        person = quantitative.per_person.get(name)
        return person.total_messages if person else 0

    # sorted() is stable, so equal volumes keep participant order.
    return sorted(names, key=lambda n: -volume(n))[:MAX_PROFILED_PARTICIPANTS]


def sample(
    conversation: ParsedConversation,
    quantitative: QuantitativeAnalysis,
    briefing: Briefing | None = None,
    *,
    settings: Settings | None = None,
) -> AnalysisSamples:
    """Build the bounded sample bundle handed to the language model.

    Raises :class:`InsufficientDataError` when fewer than ``MIN_ELIGIBLE``
    eligible messages exist.
    """

    tz = (settings or get_settings()).tz
    eligible = [m for m in conversation.messages if m.is_eligible]
    if len(eligible) < MIN_ELIGIBLE:
        raise InsufficientDataError(len(eligible), MIN_ELIGIBLE)

    overview = stratified_sample(eligible, OVERVIEW_CAP, tz)
    dynamics = _dynamics(conversation, eligible, quantitative, briefing, tz)
    per_person = {
        name: [
            SimplifiedMessage.of(m)
            for m in stratified_sample([m for m in eligible if m.sender == name], PER_PERSON_CAP, tz)
        ]
        for name in _profiled_names(conversation, quantitative)
    }
    logger.debug(
        "Sampled %d overview, %d dynamics messages for %d people",
        len(overview),
        len(dynamics),
        len(per_person),
    )
    return AnalysisSamples(
        overview=[SimplifiedMessage.of(m) for m in overview],
        dynamics=[SimplifiedMessage.of(m) for m in dynamics],
        per_person=per_person,
        quantitative_context=build_quantitative_context(quantitative, conversation.participant_names),
    )
