"""Population percentile lookup for headline metrics.

Thresholds are fixed tables walked in each metric's improving direction;
boundaries are inclusive and values outside every threshold fall back to the
10th percentile. Labels are derived from the percentile, never stored.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from .exceptions import UnknownMetricError
from .metrics.schemas import QuantitativeAnalysis
from .models import ParsedConversation

DEFAULT_PERCENTILE = 10
DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class Benchmark:
    lower_is_better: bool
    # (threshold, percentile), ordered from best to worst.
    thresholds: tuple[tuple[float, int], ...]


BENCHMARKS: Mapping[str, Benchmark] = {
    "responseTimeMinutes": Benchmark(True, ((5, 90), (15, 75), (60, 50), (240, 25))),
    "messagesPerDay": Benchmark(False, ((50, 95), (20, 85), (10, 70), (5, 50))),
    "healthScore": Benchmark(False, ((80, 90), (65, 75), (50, 50), (35, 25))),
    "emojiDiversity": Benchmark(False, ((20, 95), (10, 75), (5, 50))),
    "conversationLengthMonths": Benchmark(False, ((36, 90), (12, 70), (6, 50))),
}


@dataclass(frozen=True)
class PercentileResult:
    metric: str
    value: float
    percentile: int
    label: str
    label_pl: str

    def to_dict(self) -> dict[str, object]:
        return {
            "metric": self.metric,
            "value": self.value,
            "percentile": self.percentile,
            "label": self.label,
            "labelPl": self.label_pl,
        }


def _labels(percentile: int) -> tuple[str, str]:
    share = 100 - percentile
    if percentile >= 50:
        return f"Top {share}%", f"Top {share}%"
    return f"Bottom {share}%", f"Dolne {share}%"


def lookup(metric_key: str, value: float) -> PercentileResult:
    """Map ``value`` of ``metric_key`` onto its population percentile."""

    try:
        benchmark = BENCHMARKS[metric_key]
    except KeyError:
        raise UnknownMetricError(f"No percentile table for metric {metric_key!r}") from None

    percentile = DEFAULT_PERCENTILE
    for threshold, pct in benchmark.thresholds:
        if (value <= threshold) if benchmark.lower_is_better else (value >= threshold):
            percentile = pct
            break
    label, label_pl = _labels(percentile)
    return PercentileResult(metric=metric_key, value=value, percentile=percentile, label=label, label_pl=label_pl)


def get_all_percentiles(
    *,
    response_time_ms: float | None = None,
    messages_per_day: float | None = None,
    health_score: float | None = None,
    emoji_diversity: float | None = None,
    conversation_length_months: float | None = None,
) -> dict[str, PercentileResult]:
    """Batch :func:`lookup`; missing or non-positive values are omitted."""

    inputs = {
        "responseTimeMinutes": response_time_ms / 60_000 if response_time_ms else None,
        "messagesPerDay": messages_per_day,
        "healthScore": health_score,
        "emojiDiversity": emoji_diversity,
        "conversationLengthMonths": conversation_length_months,
    }
    return {key: lookup(key, value) for key, value in inputs.items() if value is not None and value > 0}


def percentiles_for(
    conversation: ParsedConversation, quantitative: QuantitativeAnalysis
) -> dict[str, PercentileResult]:
    """Derive batch inputs from computed metrics.

    Emoji diversity is the highest per-person distinct emoji count; there is
    no health score at this layer so it is always omitted.
    """

    medians = [t.median_response_time_ms for t in quantitative.timing.per_person.values() if t.median_response_time_ms > 0]
    diversity = max((p.unique_emoji for p in quantitative.per_person.values()), default=0)
    span = conversation.metadata.date_range.end - conversation.metadata.date_range.start
    total = sum(p.total_messages for p in quantitative.per_person.values())
    return get_all_percentiles(
        response_time_ms=sum(medians) / len(medians) if medians else None,
        messages_per_day=total / conversation.metadata.duration_days if total else None,
        emoji_diversity=diversity,
        conversation_length_months=span / (30.44 * DAY_MS),
    )
