import pytest
from conftest import DAY_MS, alternating, make_conversation, ms

from chatscope.exceptions import UnknownMetricError
from chatscope.metrics import compute
from chatscope.percentiles import get_all_percentiles, lookup, percentiles_for


def test_response_time_boundary_is_inclusive():
    assert lookup("responseTimeMinutes", 5).percentile == 90
    assert lookup("responseTimeMinutes", 5.01).percentile == 75


def test_values_beyond_every_threshold_fall_back():
    result = lookup("responseTimeMinutes", 600)
    assert result.percentile == 10
    assert (result.label, result.label_pl) == ("Bottom 90%", "Dolne 90%")


def test_higher_is_better_metrics():
    top = lookup("messagesPerDay", 50)
    assert top.percentile == 95
    assert top.label == "Top 5%"
    assert lookup("messagesPerDay", 49.9).percentile == 85
    assert lookup("conversationLengthMonths", 12).percentile == 70


def test_unknown_metric_raises():
    with pytest.raises(UnknownMetricError):
        lookup("vibes", 3)
    with pytest.raises(ValueError):
        lookup("vibes", 3)


def test_batch_converts_and_omits_missing_values():
    results = get_all_percentiles(response_time_ms=5 * 60_000, messages_per_day=0, emoji_diversity=None)
    assert set(results) == {"responseTimeMinutes"}
    assert results["responseTimeMinutes"].value == 5
    assert results["responseTimeMinutes"].to_dict() == {
        "metric": "responseTimeMinutes",
        "value": 5,
        "percentile": 90,
        "label": "Top 10%",
        "labelPl": "Top 10%",
    }


def test_percentiles_for_conversation(settings):
    conversation = make_conversation(alternating(40, start=ms(2024, 1, 1), step_ms=DAY_MS // 4))
    results = percentiles_for(conversation, compute(conversation, settings))
    assert results["responseTimeMinutes"].value == 360
    assert results["responseTimeMinutes"].percentile == 10
    assert results["messagesPerDay"].value == pytest.approx(40 / 10)
    assert "healthScore" not in results
    assert "emojiDiversity" not in results
