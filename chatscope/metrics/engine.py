"""Quantitative metrics computed in one pass over a parsed conversation.

No AI is involved and no wall-clock input is read: running :func:`compute`
twice on the same conversation produces identical results.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import chain

from ..models import NON_CONTENT_TYPES, ParsedConversation, UnifiedMessage
from ..settings import Settings, get_settings
from . import helpers
from .schemas import (
    BestTime,
    BestTimeToText,
    Burst,
    CatchphraseEntry,
    Catchphrases,
    EmojiCount,
    EngagementMetrics,
    HeatmapData,
    MessageHighlight,
    MonthlySeries,
    MonthlyVolume,
    PatternMetrics,
    PersonMetrics,
    PersonTiming,
    PhraseCount,
    QuantitativeAnalysis,
    ReciprocityIndex,
    ResponseTimeStats,
    SilenceWindow,
    TimingMetrics,
    TrendData,
    WeekdayWeekend,
    WordCount,
)

logger = logging.getLogger(__name__)

BURST_MIN_DAYS = 8
BURST_FACTOR = 3
BURST_WINDOW_DAYS = 7
CATCHPHRASE_MIN_COUNT = 3
CATCHPHRASE_MIN_UNIQUENESS = 0.6
CATCHPHRASE_LIMIT = 8
SHARED_PHRASE_MAX_SHARE = 0.7
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def _grid() -> list[list[int]]:
    return [[0] * 24 for _ in range(7)]


@dataclass
class _Person:
    total_messages: int = 0
    total_words: int = 0
    total_characters: int = 0
    longest: MessageHighlight | None = None
    shortest: MessageHighlight | None = None
    messages_with_emoji: int = 0
    emoji_count: int = 0
    emojis: Counter = field(default_factory=Counter)
    questions: int = 0
    media: int = 0
    links: int = 0
    reactions_given: int = 0
    reactions_received: int = 0
    reactions_given_freq: Counter = field(default_factory=Counter)
    unsent: int = 0
    edited: int = 0
    mentions_made: int = 0
    mentions_received: int = 0
    replies_sent: int = 0
    replies_received: int = 0
    messages_received: int = 0
    words: Counter = field(default_factory=Counter)
    phrases: Counter = field(default_factory=Counter)
    trigrams: Counter = field(default_factory=Counter)
    response_times: list[int] = field(default_factory=list)
    monthly_response_times: dict[str, list[int]] = field(default_factory=dict)
    monthly_word_counts: dict[str, list[int]] = field(default_factory=dict)
    initiations: int = 0
    endings: int = 0
    late_night: int = 0
    double_texts: int = 0
    max_consecutive: int = 0
    weekday: int = 0
    weekend: int = 0
    heatmap: list[list[int]] = field(default_factory=_grid)


class _Accumulator:
    def __init__(self, conversation: ParsedConversation, settings: Settings) -> None:
        self.settings = settings
        self.tz = settings.tz
        self.people: dict[str, _Person] = {name: _Person() for name in conversation.participant_names}
        self.sessions = 0
        self.longest_silence = SilenceWindow()
        self.heatmap = _grid()
        self.monthly_volume: dict[str, Counter] = {}
        self.monthly_initiations: dict[str, Counter] = {}
        self.daily_counts: Counter = Counter()
        self.counted = 0
        self.run_sender = ""
        self.run_length = 0

    def person(self, name: str) -> _Person:
        if name not in self.people:
            self.people[name] = _Person()
        return self.people[name]

    def _initiate(self, sender: str, month: str) -> None:
        self.sessions += 1
        self.person(sender).initiations += 1
        self.monthly_initiations.setdefault(month, Counter())[sender] += 1

    def _close_run(self) -> None:
        if not self.run_sender:
            return
        person = self.person(self.run_sender)
        if self.run_length >= 2:
            person.double_texts += 1
        person.max_consecutive = max(person.max_consecutive, self.run_length)

    def add(self, msg: UnifiedMessage, prev: UnifiedMessage | None, by_index: dict[int, UnifiedMessage]) -> None:
        sender = msg.sender
        acc = self.person(sender)
        local = datetime.fromtimestamp(msg.timestamp / 1000, tz=self.tz)
        month = local.strftime("%Y-%m")
        self.counted += 1

        acc.total_messages += 1
        words = helpers.count_words(msg.content)
        acc.total_words += words
        acc.total_characters += len(msg.content)
        if msg.content.strip():
            highlight = MessageHighlight(content=msg.content, length=words, timestamp=msg.timestamp)
            if acc.longest is None or words > acc.longest.length:
                acc.longest = highlight
            if words > 0 and (acc.shortest is None or words < acc.shortest.length):
                acc.shortest = highlight
            tokens = helpers.tokenize_words(msg.content)
            acc.words.update(tokens)
            acc.phrases.update(f"{a} {b}" for a, b in zip(tokens, tokens[1:]))
            acc.trigrams.update(f"{a} {b} {c}" for a, b, c in zip(tokens, tokens[1:], tokens[2:]))

        emojis = helpers.extract_emojis(msg.content)
        if emojis:
            acc.messages_with_emoji += 1
            acc.emoji_count += len(emojis)
            acc.emojis.update(emojis)
        if helpers.asks_question(msg.content):
            acc.questions += 1
        if msg.has_media:
            acc.media += 1
        if msg.has_link:
            acc.links += 1
        if msg.is_edited:
            acc.edited += 1

        for reaction in msg.reactions:
            acc.reactions_received += reaction.count
            if reaction.actor in self.people and reaction.actor != "unknown":
                giver = self.people[reaction.actor]
                giver.reactions_given += reaction.count
                giver.reactions_given_freq[reaction.emoji] += reaction.count
        for name, other in self.people.items():
            if name != sender:
                other.messages_received += 1

        for mentioned in msg.mentions or ():
            acc.mentions_made += 1
            if mentioned in self.people:
                self.people[mentioned].mentions_received += 1
        if msg.reply_to_index is not None and msg.reply_to_index in by_index:
            acc.replies_sent += 1
            target = by_index[msg.reply_to_index].sender
            if target != sender:
                self.person(target).replies_received += 1

        gap = msg.timestamp - prev.timestamp if prev is not None else 0
        if prev is None:
            self._initiate(sender, month)
        elif gap > self.settings.session_gap_ms:
            self.person(prev.sender).endings += 1
            self._initiate(sender, month)
        elif prev.sender != sender:
            acc.response_times.append(gap)
            acc.monthly_response_times.setdefault(month, []).append(gap)

        if prev is not None and gap > self.longest_silence.duration_ms:
            self.longest_silence = SilenceWindow(
                duration_ms=gap,
                start_timestamp=prev.timestamp,
                end_timestamp=msg.timestamp,
                last_sender=prev.sender,
                next_sender=sender,
            )

        if self.settings.is_late_night(local.hour):
            acc.late_night += 1

        if sender == self.run_sender:
            self.run_length += 1
        else:
            self._close_run()
            self.run_sender = sender
            self.run_length = 1

        day_of_week = (local.weekday() + 1) % 7  # 0 = Sunday
        acc.heatmap[day_of_week][local.hour] += 1
        self.heatmap[day_of_week][local.hour] += 1
        if day_of_week in (0, 6):
            acc.weekend += 1
        else:
            acc.weekday += 1

        self.monthly_volume.setdefault(month, Counter())[sender] += 1
        self.daily_counts[local.strftime("%Y-%m-%d")] += 1
        acc.monthly_word_counts.setdefault(month, []).append(words)

    def finish(self, last: UnifiedMessage | None) -> None:
        self._close_run()
        if last is not None:
            self.person(last.sender).endings += 1


def _response_stats(samples: list[int]) -> ResponseTimeStats:
    if not samples:
        return ResponseTimeStats()
    kept, q1, q3 = helpers.filter_outliers(samples)
    ordered = sorted(kept)
    return ResponseTimeStats(
        sample_size=len(kept),
        outliers_removed=len(samples) - len(kept),
        mean=helpers.mean(kept),
        median=helpers.median(kept),
        min=ordered[0],
        max=ordered[-1],
        trimmed_mean=helpers.trimmed_mean(kept),
        std_dev=helpers.std_dev(kept),
        q1=q1,
        q3=q3,
        iqr=q3 - q1,
        p75=helpers.percentile(ordered, 75),
        p90=helpers.percentile(ordered, 90),
        p95=helpers.percentile(ordered, 95),
        skewness=helpers.skewness(kept),
    )


def _person_metrics(acc: _Person) -> PersonMetrics:
    total = acc.total_messages
    return PersonMetrics(
        total_messages=total,
        total_words=acc.total_words,
        total_characters=acc.total_characters,
        average_message_length=acc.total_words / total if total else 0,
        average_message_chars=acc.total_characters / total if total else 0,
        longest_message=acc.longest or MessageHighlight(),
        shortest_message=acc.shortest or MessageHighlight(),
        messages_with_emoji=acc.messages_with_emoji,
        emoji_count=acc.emoji_count,
        unique_emoji=len(acc.emojis),
        top_emojis=[EmojiCount(emoji=e, count=c) for e, c in acc.emojis.most_common(10)],
        questions_asked=acc.questions,
        media_shared=acc.media,
        links_shared=acc.links,
        reactions_given=acc.reactions_given,
        reactions_received=acc.reactions_received,
        top_reactions_given=[EmojiCount(emoji=e, count=c) for e, c in acc.reactions_given_freq.most_common(5)],
        unsent_messages=acc.unsent,
        edited_messages=acc.edited,
        mentions_made=acc.mentions_made,
        mentions_received=acc.mentions_received,
        replies_sent=acc.replies_sent,
        replies_received=acc.replies_received,
        top_words=[WordCount(word=w, count=c) for w, c in acc.words.most_common(20)],
        top_phrases=[PhraseCount(phrase=p, count=c) for p, c in acc.phrases.most_common(10)],
        unique_words=len(acc.words),
        # Guiraud's R
        vocabulary_richness=len(acc.words) / (acc.total_words ** 0.5) if acc.total_words else 0,
    )


def _person_timing(acc: _Person) -> PersonTiming:
    samples = acc.response_times
    monthly = [helpers.mean(acc.monthly_response_times[m]) for m in sorted(acc.monthly_response_times)]
    return PersonTiming(
        average_response_time_ms=helpers.mean(samples),
        median_response_time_ms=helpers.median(samples),
        fastest_response_ms=min(samples) if samples else 0,
        slowest_response_ms=max(samples) if samples else 0,
        response_time_trend=helpers.normalized_slope(monthly),
        distribution=_response_stats(samples),
    )


def detect_bursts(daily_counts: dict[str, int]) -> list[Burst]:
    """Days above ``BURST_FACTOR`` times the trailing 7-day average, merged into runs."""

    days = sorted(daily_counts)
    if len(days) < BURST_MIN_DAYS:
        return []
    counts = [daily_counts[d] for d in days]
    overall = helpers.mean(counts)
    burst_days: list[tuple[str, int]] = []
    for i, (day, count) in enumerate(zip(days, counts)):
        baseline = overall if i < BURST_WINDOW_DAYS else sum(counts[i - BURST_WINDOW_DAYS : i]) / BURST_WINDOW_DAYS
        if baseline > 0 and count > BURST_FACTOR * baseline:
            burst_days.append((day, count))

    bursts: list[Burst] = []
    run: list[tuple[str, int]] = []
    for day, count in burst_days:
        if run and (date.fromisoformat(day) - date.fromisoformat(run[-1][0])).days > 1:
            bursts.append(_burst(run))
            run = []
        run.append((day, count))
    if run:
        bursts.append(_burst(run))
    return bursts


def _burst(run: list[tuple[str, int]]) -> Burst:
    total = sum(c for _, c in run)
    return Burst(start_date=run[0][0], end_date=run[-1][0], message_count=total, avg_daily=total / len(run))


def _balance(a: float, b: float) -> int:
    total = a + b
    if total <= 0:
        return 50
    return round(100 * (1 - 2 * abs(a / total - 0.5)))


def _reciprocity(names: list[str], people: dict[str, _Person], timing: dict[str, PersonTiming]) -> ReciprocityIndex:
    if len(names) < 2:
        return ReciprocityIndex()
    a, b = people[names[0]], people[names[1]]
    rt_a = timing[names[0]].median_response_time_ms
    rt_b = timing[names[1]].median_response_time_ms
    symmetry = round(100 * min(rt_a, rt_b) / max(rt_a, rt_b)) if rt_a > 0 and rt_b > 0 else 50
    message_balance = _balance(a.total_messages, b.total_messages)
    initiation_balance = _balance(a.initiations, b.initiations)
    reaction_balance = _balance(a.reactions_given, b.reactions_given)
    return ReciprocityIndex(
        overall=round((message_balance + initiation_balance + symmetry + reaction_balance) / 4),
        message_balance=message_balance,
        initiation_balance=initiation_balance,
        response_time_symmetry=symmetry,
        reaction_balance=reaction_balance,
    )


def _round2(value: float) -> float:
    # Half-up, unlike round()
    return math.floor(value * 100 + 0.5) / 100


def _catchphrases(people: dict[str, _Person]) -> Catchphrases:
    """Bigrams and trigrams a person repeats and mostly owns.

    A phrase qualifies for a person with at least ``CATCHPHRASE_MIN_COUNT``
    uses of which at least ``CATCHPHRASE_MIN_UNIQUENESS`` are theirs. Shared
    phrases are used by several people with nobody above
    ``SHARED_PHRASE_MAX_SHARE`` of the uses.
    """

    usage: dict[str, Counter] = {}
    for name, person in people.items():
        for phrase, count in chain(person.phrases.items(), person.trigrams.items()):
            usage.setdefault(phrase, Counter())[name] += count

    per_person: dict[str, list[CatchphraseEntry]] = {}
    for name, person in people.items():
        candidates = []
        for phrase, count in chain(person.phrases.items(), person.trigrams.items()):
            if count < CATCHPHRASE_MIN_COUNT:
                continue
            uniqueness = count / sum(usage[phrase].values())
            if uniqueness < CATCHPHRASE_MIN_UNIQUENESS:
                continue
            candidates.append(CatchphraseEntry(phrase=phrase, count=count, uniqueness=_round2(uniqueness)))
        # sort() is stable: ties keep bigrams first, then first-seen order.
        candidates.sort(key=lambda e: -e.count * e.uniqueness)
        per_person[name] = candidates[:CATCHPHRASE_LIMIT]

    shared = []
    for phrase, by_person in usage.items():
        total = sum(by_person.values())
        if len(by_person) < 2 or total < CATCHPHRASE_MIN_COUNT:
            continue
        top_share = max(by_person.values()) / total
        if top_share <= SHARED_PHRASE_MAX_SHARE:
            shared.append(CatchphraseEntry(phrase=phrase, count=total, uniqueness=_round2(top_share)))
    shared.sort(key=lambda e: -e.count)
    return Catchphrases(per_person=per_person, shared=shared[:CATCHPHRASE_LIMIT])


def _best_time_to_text(people: dict[str, _Person], timing: dict[str, PersonTiming]) -> BestTimeToText:
    """Busiest heatmap cell per person with a two-hour window starting there."""

    result: dict[str, BestTime] = {}
    for name, person in people.items():
        avg_response = timing[name].median_response_time_ms
        best_count, best_day, best_hour = 0, 0, 0
        for day, row in enumerate(person.heatmap):
            for hour, count in enumerate(row):
                if count > best_count:
                    best_count, best_day, best_hour = count, day, hour
        if best_count == 0:
            result[name] = BestTime(avg_response_ms=avg_response)
            continue
        day_name = DAY_NAMES[best_day]
        end = min(best_hour + 2, 24)
        result[name] = BestTime(
            best_day=day_name,
            best_hour=best_hour,
            best_window=f"{day_name}s {best_hour:02d}:00-{end:02d}:00",
            avg_response_ms=avg_response,
        )
    return BestTimeToText(per_person=result)


def _trends(acc: _Accumulator, months: list[str]) -> TrendData:
    names = list(acc.people)
    response, length, initiation = [], [], []
    for month in months:
        started = acc.monthly_initiations.get(month, Counter())
        started_total = sum(started.values())
        response.append(
            MonthlySeries(
                month=month,
                per_person={n: helpers.mean(acc.people[n].monthly_response_times.get(month, [])) for n in names},
            )
        )
        length.append(
            MonthlySeries(
                month=month,
                per_person={n: helpers.mean(acc.people[n].monthly_word_counts.get(month, [])) for n in names},
            )
        )
        initiation.append(
            MonthlySeries(
                month=month,
                per_person={n: started[n] / started_total if started_total else 0 for n in names},
            )
        )
    return TrendData(response_time_trend=response, message_length_trend=length, initiation_trend=initiation)


def compute(conversation: ParsedConversation, settings: Settings | None = None) -> QuantitativeAnalysis:
    """Compute every quantitative metric for ``conversation``.

    ``system`` and ``call`` messages are ignored; unsent messages only count
    towards ``unsentMessages``.
    """

    settings = settings or get_settings()
    acc = _Accumulator(conversation, settings)
    by_index = {m.index: m for m in conversation.messages}

    prev: UnifiedMessage | None = None
    for msg in conversation.messages:
        if msg.type in NON_CONTENT_TYPES:
            continue
        if msg.is_unsent:
            acc.person(msg.sender).unsent += 1
            continue
        acc.add(msg, prev, by_index)
        prev = msg
    acc.finish(prev)

    names = list(acc.people)
    total = acc.counted
    per_person = {n: _person_metrics(acc.people[n]) for n in names}
    timing_per_person = {n: _person_timing(acc.people[n]) for n in names}

    months = sorted(acc.monthly_volume)
    monthly_volume = [
        MonthlyVolume(
            month=m,
            per_person={n: acc.monthly_volume[m][n] for n in names},
            total=sum(acc.monthly_volume[m].values()),
        )
        for m in months
    ]

    analysis = QuantitativeAnalysis(
        per_person=per_person,
        timing=TimingMetrics(
            per_person=timing_per_person,
            conversation_initiations={n: acc.people[n].initiations for n in names},
            conversation_endings={n: acc.people[n].endings for n in names},
            longest_silence=acc.longest_silence,
            late_night_messages={n: acc.people[n].late_night for n in names},
        ),
        engagement=EngagementMetrics(
            double_texts={n: acc.people[n].double_texts for n in names},
            max_consecutive={n: acc.people[n].max_consecutive for n in names},
            message_ratio={n: acc.people[n].total_messages / total if total else 0 for n in names},
            reaction_rate={
                n: acc.people[n].reactions_given / acc.people[n].messages_received
                if acc.people[n].messages_received
                else 0
                for n in names
            },
            reaction_receive_rate={
                n: acc.people[n].reactions_received / acc.people[n].total_messages
                if acc.people[n].total_messages
                else 0
                for n in names
            },
            avg_conversation_length=total / acc.sessions if acc.sessions else 0,
            total_sessions=acc.sessions,
        ),
        patterns=PatternMetrics(
            monthly_volume=monthly_volume,
            weekday_weekend=WeekdayWeekend(
                weekday={n: acc.people[n].weekday for n in names},
                weekend={n: acc.people[n].weekend for n in names},
            ),
            volume_trend=helpers.normalized_slope([mv.total for mv in monthly_volume]),
            bursts=detect_bursts(acc.daily_counts),
        ),
        heatmap=HeatmapData(
            per_person={n: acc.people[n].heatmap for n in names},
            combined=acc.heatmap,
        ),
        trends=_trends(acc, months),
        best_time_to_text=_best_time_to_text(acc.people, timing_per_person),
        catchphrases=_catchphrases(acc.people),
        reciprocity_index=_reciprocity(conversation.participant_names, acc.people, timing_per_person),
    )
    logger.debug("Computed metrics for %d messages across %d people", total, len(names))
    return analysis
