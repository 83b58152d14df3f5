import pytest
from conftest import HOUR_MS, MINUTE_MS, make_conversation, ms

from chatscope.metrics import compute, detect_bursts
from chatscope.settings import Settings


@pytest.fixture
def conversation():
    return make_conversation(
        [
            ("A", "Hi there 😀", ms(2024, 1, 1, 10, 0)),
            (
                "B",
                "Hello! How are you?",
                ms(2024, 1, 1, 10, 5),
                {"reactions": [{"emoji": "❤", "actor": "A"}]},
            ),
            ("B", "still there?", ms(2024, 1, 1, 10, 6)),
            ("A", "yes", ms(2024, 1, 1, 10, 20)),
            ("System", "C joined", ms(2024, 1, 1, 10, 21), {"type": "system"}),
            ("A", "oops", ms(2024, 1, 1, 10, 22), {"is_unsent": True}),
            ("B", "good morning", ms(2024, 1, 1, 18, 30)),
            ("A", "late reply", ms(2024, 1, 1, 23, 0)),
        ]
    )


@pytest.fixture
def analysis(conversation, settings):
    return compute(conversation, settings)


def test_counts_skip_system_and_unsent(analysis):
    assert set(analysis.per_person) == {"A", "B"}
    assert analysis.per_person["A"].total_messages == 3
    assert analysis.per_person["B"].total_messages == 3
    assert analysis.per_person["A"].unsent_messages == 1
    assert analysis.engagement.message_ratio == {"A": 0.5, "B": 0.5}


def test_sessions_initiations_and_endings(analysis):
    assert analysis.engagement.total_sessions == 2
    assert analysis.timing.conversation_initiations == {"A": 1, "B": 1}
    assert analysis.timing.conversation_endings == {"A": 2, "B": 0}
    assert analysis.engagement.avg_conversation_length == 3


def test_response_times(analysis):
    timing = analysis.timing.per_person
    assert timing["B"].median_response_time_ms == 5 * MINUTE_MS
    assert timing["A"].fastest_response_ms == 14 * MINUTE_MS
    assert timing["A"].slowest_response_ms == 4.5 * HOUR_MS
    assert timing["A"].distribution.sample_size == 2


def test_longest_silence(analysis):
    silence = analysis.timing.longest_silence
    assert silence.duration_ms == 8 * HOUR_MS + 10 * MINUTE_MS
    assert (silence.last_sender, silence.next_sender) == ("A", "B")


def test_double_texts_and_late_night(analysis):
    assert analysis.engagement.double_texts == {"A": 0, "B": 1}
    assert analysis.engagement.max_consecutive == {"A": 1, "B": 2}
    assert analysis.timing.late_night_messages == {"A": 1, "B": 0}


def test_text_metrics(analysis):
    a, b = analysis.per_person["A"], analysis.per_person["B"]
    assert b.questions_asked == 2
    assert a.top_emojis[0].emoji == "😀"
    assert a.reactions_given == 1 and b.reactions_received == 1
    assert analysis.engagement.reaction_rate["A"] == pytest.approx(1 / 3)
    assert b.longest_message.content == "Hello! How are you?"


def test_heatmap_uses_sunday_as_day_zero(analysis):
    # 2024-01-01 was a Monday.
    assert analysis.heatmap.combined[1][10] == 4
    assert sum(map(sum, analysis.heatmap.combined)) == 6


def test_gap_of_exactly_session_threshold_stays_in_session(settings):
    conversation = make_conversation(
        [("A", "one", ms(2024, 1, 1, 0)), ("B", "two", ms(2024, 1, 1, 6))]
    )
    analysis = compute(conversation, settings)
    assert analysis.engagement.total_sessions == 1
    assert analysis.timing.per_person["B"].median_response_time_ms == 6 * HOUR_MS


def test_calendar_fields_follow_configured_timezone():
    conversation = make_conversation(
        [("A", "evening", ms(2024, 1, 1, 21, 30)), ("B", "night", ms(2024, 1, 1, 21, 40))]
    )
    utc = compute(conversation, Settings())
    warsaw = compute(conversation, Settings(timezone="Europe/Warsaw"))
    assert utc.timing.late_night_messages == {"A": 0, "B": 0}
    assert warsaw.timing.late_night_messages == {"A": 1, "B": 1}


def test_monthly_volume_and_trends(settings):
    rows = []
    for month, count in ((1, 2), (2, 4), (3, 6)):
        for i in range(count):
            rows.append(("A" if i % 2 == 0 else "B", "hello there", ms(2024, month, 10, 12, i)))
    analysis = compute(make_conversation(rows), settings)
    assert [(mv.month, mv.total) for mv in analysis.patterns.monthly_volume] == [
        ("2024-01", 2),
        ("2024-02", 4),
        ("2024-03", 6),
    ]
    assert analysis.patterns.volume_trend == pytest.approx(0.5)
    assert [s.month for s in analysis.trends.initiation_trend] == ["2024-01", "2024-02", "2024-03"]


def test_compute_is_deterministic(conversation, settings):
    first = compute(conversation, settings).model_dump_json(by_alias=True)
    second = compute(conversation, settings).model_dump_json(by_alias=True)
    assert first == second


def test_empty_conversation_has_zero_metrics(settings):
    analysis = compute(make_conversation([]), settings)
    assert analysis.per_person == {}
    assert analysis.engagement.total_sessions == 0
    assert analysis.reciprocity_index.overall == 50


def test_detect_bursts():
    days = {f"2024-01-{d:02d}": 1 for d in range(1, 10)}
    days["2024-01-10"] = 20
    bursts = detect_bursts(days)
    assert len(bursts) == 1
    assert (bursts[0].start_date, bursts[0].message_count) == ("2024-01-10", 20)
    assert detect_bursts({"2024-01-01": 50}) == []


@pytest.fixture
def phrases_conversation():
    rows = []
    for i in range(3):
        rows.append(("A", "Pizza party tonight!", ms(2024, 1, 1, 10, 10 * i)))
        rows.append(("B", "good night sweetheart", ms(2024, 1, 2, 21, 10 * i)))
    for i in range(2):
        rows.append(("A", "movie night?", ms(2024, 1, 1, 10, 40 + i)))
        rows.append(("B", "movie night", ms(2024, 1, 2, 21, 40 + i)))
    return make_conversation(rows)


def test_catchphrases_per_person(phrases_conversation, settings):
    catchphrases = compute(phrases_conversation, settings).catchphrases
    assert [(e.phrase, e.count, e.uniqueness) for e in catchphrases.per_person["A"]] == [
        ("pizza party", 3, 1.0),
        ("party tonight", 3, 1.0),
        ("pizza party tonight", 3, 1.0),
    ]
    assert [e.phrase for e in catchphrases.per_person["B"]] == [
        "good night",
        "night sweetheart",
        "good night sweetheart",
    ]
    assert [(e.phrase, e.count, e.uniqueness) for e in catchphrases.shared] == [("movie night", 4, 0.5)]


def test_catchphrase_needs_majority_ownership(settings):
    rows = [("A", "pizza party", ms(2024, 1, 1, 10, i)) for i in range(3)]
    rows += [("B", "pizza party", ms(2024, 1, 1, 11, i)) for i in range(3)]
    catchphrases = compute(make_conversation(rows), settings).catchphrases
    assert catchphrases.per_person == {"A": [], "B": []}
    assert catchphrases.shared[0].count == 6


def test_best_time_to_text(phrases_conversation, settings):
    best = compute(phrases_conversation, settings).best_time_to_text.per_person
    assert (best["A"].best_day, best["A"].best_hour, best["A"].best_window) == ("Monday", 10, "Mondays 10:00-12:00")
    assert best["B"].best_window == "Tuesdays 21:00-23:00"


def test_best_time_window_stops_at_midnight(settings):
    rows = [("A", "late", ms(2024, 1, 6, 23, 0)), ("B", "very late", ms(2024, 1, 6, 23, 30))]
    analysis = compute(make_conversation(rows), settings)
    assert analysis.best_time_to_text.per_person["A"].best_window == "Saturdays 23:00-24:00"
    assert analysis.best_time_to_text.per_person["A"].avg_response_ms == 0
    assert analysis.best_time_to_text.per_person["B"].avg_response_ms == 30 * MINUTE_MS
    dumped = analysis.model_dump(by_alias=True)
    assert "bestTimeToText" in dumped and "catchphrases" in dumped


def test_best_time_without_messages(settings):
    rows = [("A", "hi", ms(2024, 1, 1)), ("B", "gone", ms(2024, 1, 1, 1), {"is_unsent": True})]
    best = compute(make_conversation(rows), settings).best_time_to_text.per_person
    assert best["B"].best_day is None
    assert best["B"].best_window is None
