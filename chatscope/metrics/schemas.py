"""Pydantic models for the quantitative analysis result.

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class EmojiCount(CamelModel):
    emoji: str
    count: int


class WordCount(CamelModel):
    word: str
    count: int


class PhraseCount(CamelModel):
    phrase: str
    count: int


class MessageHighlight(CamelModel):
    content: str = ""
    length: int = 0
    timestamp: int = 0


class PersonMetrics(CamelModel):
    total_messages: int = 0
    total_words: int = 0
    total_characters: int = 0
    average_message_length: float = 0
    average_message_chars: float = 0
    longest_message: MessageHighlight = Field(default_factory=MessageHighlight)
    shortest_message: MessageHighlight = Field(default_factory=MessageHighlight)
    messages_with_emoji: int = 0
    emoji_count: int = 0
    unique_emoji: int = 0
    top_emojis: list[EmojiCount] = Field(default_factory=list)
    questions_asked: int = 0
    media_shared: int = 0
    links_shared: int = 0
    reactions_given: int = 0
    reactions_received: int = 0
    top_reactions_given: list[EmojiCount] = Field(default_factory=list)
    unsent_messages: int = 0
    edited_messages: int = 0
    mentions_made: int = 0
    mentions_received: int = 0
    replies_sent: int = 0
    replies_received: int = 0
    top_words: list[WordCount] = Field(default_factory=list)
    top_phrases: list[PhraseCount] = Field(default_factory=list)
    unique_words: int = 0
    vocabulary_richness: float = 0


class ResponseTimeStats(CamelModel):
    """Distribution of one person's response times (ms), outliers removed."""

    sample_size: int = 0
    outliers_removed: int = 0
    mean: float = 0
    median: float = 0
    min: float = 0
    max: float = 0
    trimmed_mean: float = 0
    std_dev: float = 0
    q1: float = 0
    q3: float = 0
    iqr: float = 0
    p75: float = 0
    p90: float = 0
    p95: float = 0
    skewness: float = 0


class PersonTiming(CamelModel):
    average_response_time_ms: float = 0
    median_response_time_ms: float = 0
    fastest_response_ms: float = 0
    slowest_response_ms: float = 0
    # Relative change of the monthly average per month (0.1 == +10%/month).
    response_time_trend: float = 0
    distribution: ResponseTimeStats = Field(default_factory=ResponseTimeStats)


class SilenceWindow(CamelModel):
    duration_ms: int = 0
    start_timestamp: int = 0
    end_timestamp: int = 0
    last_sender: str = ""
    next_sender: str = ""


class TimingMetrics(CamelModel):
    per_person: dict[str, PersonTiming] = Field(default_factory=dict)
    conversation_initiations: dict[str, int] = Field(default_factory=dict)
    conversation_endings: dict[str, int] = Field(default_factory=dict)
    longest_silence: SilenceWindow = Field(default_factory=SilenceWindow)
    late_night_messages: dict[str, int] = Field(default_factory=dict)


class EngagementMetrics(CamelModel):
    double_texts: dict[str, int] = Field(default_factory=dict)
    max_consecutive: dict[str, int] = Field(default_factory=dict)
    message_ratio: dict[str, float] = Field(default_factory=dict)
    # Reactions given per message received from others.
    reaction_rate: dict[str, float] = Field(default_factory=dict)
    # Reactions received per own message.
    reaction_receive_rate: dict[str, float] = Field(default_factory=dict)
    avg_conversation_length: float = 0
    total_sessions: int = 0


class MonthlyVolume(CamelModel):
    month: str
    per_person: dict[str, int]
    total: int


class WeekdayWeekend(CamelModel):
    weekday: dict[str, int] = Field(default_factory=dict)
    weekend: dict[str, int] = Field(default_factory=dict)


class Burst(CamelModel):
    start_date: str
    end_date: str
    message_count: int
    avg_daily: float


class PatternMetrics(CamelModel):
    monthly_volume: list[MonthlyVolume] = Field(default_factory=list)
    weekday_weekend: WeekdayWeekend = Field(default_factory=WeekdayWeekend)
    # Slope of monthly totals divided by their mean.
    volume_trend: float = 0
    bursts: list[Burst] = Field(default_factory=list)


class HeatmapData(CamelModel):
    """Message counts indexed ``[day_of_week][hour]``, day 0 is Sunday."""

    per_person: dict[str, list[list[int]]] = Field(default_factory=dict)
    combined: list[list[int]] = Field(default_factory=list)


class MonthlySeries(CamelModel):
    month: str
    per_person: dict[str, float]


class TrendData(CamelModel):
    response_time_trend: list[MonthlySeries] = Field(default_factory=list)
    message_length_trend: list[MonthlySeries] = Field(default_factory=list)
    initiation_trend: list[MonthlySeries] = Field(default_factory=list)


class CatchphraseEntry(CamelModel):
    phrase: str
    count: int
    # Share of all uses of the phrase that come from this person.
    uniqueness: float


class Catchphrases(CamelModel):
    per_person: dict[str, list[CatchphraseEntry]] = Field(default_factory=dict)
    shared: list[CatchphraseEntry] = Field(default_factory=list)


class BestTime(CamelModel):
    """Busiest weekday and hour of a person's heatmap."""

    best_day: str | None = None
    best_hour: int = 0
    best_window: str | None = None
    avg_response_ms: float = 0


class BestTimeToText(CamelModel):
    per_person: dict[str, BestTime] = Field(default_factory=dict)


class ReciprocityIndex(CamelModel):
    """Balance scores between the first two participants; 100 is even."""

    overall: int = 50
    message_balance: int = 50
    initiation_balance: int = 50
    response_time_symmetry: int = 50
    reaction_balance: int = 50


class QuantitativeAnalysis(CamelModel):
    per_person: dict[str, PersonMetrics] = Field(default_factory=dict)
    timing: TimingMetrics = Field(default_factory=TimingMetrics)
    engagement: EngagementMetrics = Field(default_factory=EngagementMetrics)
    patterns: PatternMetrics = Field(default_factory=PatternMetrics)
    heatmap: HeatmapData = Field(default_factory=HeatmapData)
    trends: TrendData = Field(default_factory=TrendData)
    best_time_to_text: BestTimeToText = Field(default_factory=BestTimeToText)
    catchphrases: Catchphrases = Field(default_factory=Catchphrases)
    reciprocity_index: ReciprocityIndex = Field(default_factory=ReciprocityIndex)
