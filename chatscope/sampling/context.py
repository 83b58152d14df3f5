"""Plain-text digest of the quantitative metrics for prompt context.

The digest depends only on its inputs; it never mentions the current date.
"""

from __future__ import annotations

from collections.abc import Sequence

from ..metrics.schemas import QuantitativeAnalysis

TREND_THRESHOLD = 0.1
DAY_MS = 86_400_000


def trend_direction(slope: float, threshold: float = TREND_THRESHOLD) -> str:
    if slope > threshold:
        return "increasing"
    if slope < -threshold:
        return "decreasing"
    return "stable"


def format_duration(ms: float) -> str:
    if ms < 60_000:
        return f"{round(ms / 1000)}s"
    if ms < 3_600_000:
        return f"{round(ms / 60_000)} min"
    return f"{ms / 3_600_000:.1f}h"


def build_quantitative_context(quantitative: QuantitativeAnalysis, names: Sequence[str]) -> str:
    lines = ["QUANTITATIVE METRICS SUMMARY:", ""]
    volume = quantitative.patterns.monthly_volume

    if volume:
        lines.append(f"CONVERSATION DATE RANGE: {volume[0].month} to {volume[-1].month}")
        lines.append("")
        lines.append("MONTHLY MESSAGE VOLUME:")
        lines.extend(f"  {mv.month}: {mv.total} messages" for mv in volume)
        lines.append("")

    lines.append("MESSAGE VOLUME:")
    for name in names:
        pm = quantitative.per_person.get(name)
        if pm:
            lines.append(
                f"  {name}: {pm.total_messages} messages, {pm.total_words} words, "
                f"avg {pm.average_message_length:.1f} words/msg"
            )

    lines += ["", "MESSAGE RATIO:"]
    for name in names:
        ratio = quantitative.engagement.message_ratio.get(name)
        if ratio is not None:
            lines.append(f"  {name}: {ratio * 100:.1f}%")

    lines += ["", "RESPONSE TIMES:"]
    for name in names:
        timing = quantitative.timing.per_person.get(name)
        if timing:
            lines.append(
                f"  {name}: median {format_duration(timing.median_response_time_ms)}, "
                f"avg {format_duration(timing.average_response_time_ms)}, "
                f"trend {trend_direction(timing.response_time_trend)}"
            )

    lines += ["", "CONVERSATION INITIATIONS:"]
    for name in names:
        count = quantitative.timing.conversation_initiations.get(name)
        if count is not None:
            lines.append(f"  {name}: {count} times")

    lines += ["", "DOUBLE TEXTING:"]
    for name in names:
        count = quantitative.engagement.double_texts.get(name)
        if count is not None:
            lines.append(f"  {name}: {count} times")

    lines += ["", "REACTIONS:"]
    for name in names:
        pm = quantitative.per_person.get(name)
        if pm:
            lines.append(f"  {name}: gave {pm.reactions_given}, received {pm.reactions_received}")

    lines += ["", "QUESTIONS ASKED:"]
    for name in names:
        pm = quantitative.per_person.get(name)
        if pm:
            lines.append(f"  {name}: {pm.questions_asked}")

    trend = quantitative.patterns.volume_trend
    sign = "+" if trend > 0 else ""
    lines += ["", f"OVERALL VOLUME TREND: {trend_direction(trend)} ({sign}{trend:.2f})"]

    engagement = quantitative.engagement
    lines += [
        "",
        f"CONVERSATION SESSIONS: {engagement.total_sessions} total, "
        f"avg {engagement.avg_conversation_length:.1f} messages/session",
    ]

    silence = quantitative.timing.longest_silence
    lines += [
        "",
        f"LONGEST SILENCE: {round(silence.duration_ms / DAY_MS)} days "
        f"(last message by {silence.last_sender or 'n/a'}, broken by {silence.next_sender or 'n/a'})",
    ]
    return "\n".join(lines)
