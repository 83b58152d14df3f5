"""Pure statistics and text helpers used by the metrics engine.

Every function returns ``0`` (never ``NaN``) for inputs too small to support
the statistic.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Sequence

EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001F3FA"  # skin tone modifiers 1F3FB-1F3FF excluded
    "\U0001F400-\U0001FAFF"
    "\u2600-\u27BF"
    "\u2B05-\u2B07\u2B1B\u2B1C\u2B50\u2B55"
    "\u231A\u231B\u2328\u23CF\u23E9-\u23F3\u23F8-\u23FA"
    "\u2194-\u2199\u21A9\u21AA"
    "\u3030\u303D\u3297\u3299\u203C\u2049\u2122\u2139\u24C2\u2934\u2935"
    "]"
)
_SPLIT_RE = re.compile(r"""[\s.,!?;:()\[\]{}"'\-/\\<>@#$%^&*+=|~`]+""")
_URL_RE = re.compile(r"https?://\S+")

STOPWORDS = frozenset(
    """
    a an and are as at be been but by can could did do does for from had has have he her his
    how i if in into is it its just me my no not of on or our she so than that the their them
    then there they this to too up us was we were what when where which who will with would
    you your im dont its ok okay yes yeah oh
    aby ale bo by być czy do dla go i ich ja jak jakby jest jestem jeszcze już ma mam mi mnie
    może na nie nic no o od on ona one oni po pod się ta tak tam te tego tej to ty tylko tym
    u w we wiesz z za że żeby
    """.split()
)


def extract_emojis(text: str) -> list[str]:
    return EMOJI_RE.findall(text)


def count_words(text: str) -> int:
    return len(text.split())


def tokenize_words(text: str) -> list[str]:
    """Lowercase words of at least two characters, emoji and stopwords removed."""
    normalized = unicodedata.normalize("NFC", text).lower()
    normalized = EMOJI_RE.sub("", _URL_RE.sub(" ", normalized))
    return [w for w in _SPLIT_RE.split(normalized) if len(w) >= 2 and w not in STOPWORDS]


def asks_question(text: str) -> bool:
    return "?" in _URL_RE.sub("", text)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0
    return sum(values) / len(values)


def median(values: Sequence[float]) -> float:
    if not values:
        return 0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def percentile(ordered: Sequence[float], p: float) -> float:
    """Linear-interpolated percentile ``p`` (0-100) of an already sorted sequence."""
    if not ordered:
        return 0
    idx = (p / 100) * (len(ordered) - 1)
    lo = math.floor(idx)
    hi = math.ceil(idx)
    if lo == hi:
        return ordered[lo]
    return ordered[lo] + (ordered[hi] - ordered[lo]) * (idx - lo)


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation."""
    if len(values) < 2:
        return 0
    avg = mean(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


def trimmed_mean(values: Sequence[float], trim_fraction: float = 0.1) -> float:
    """Mean after dropping ``trim_fraction`` of samples from each end."""
    if not values:
        return 0
    ordered = sorted(values)
    trim = math.floor(len(ordered) * trim_fraction)
    if trim * 2 >= len(ordered):
        return median(values)
    return mean(ordered[trim : len(ordered) - trim])


def skewness(values: Sequence[float]) -> float:
    """Fisher-Pearson coefficient of skewness."""
    if len(values) < 3:
        return 0
    sd = std_dev(values)
    if sd == 0:
        return 0
    avg = mean(values)
    return sum(((v - avg) / sd) ** 3 for v in values) / len(values)


def filter_outliers(values: Sequence[float]) -> tuple[list[float], float, float]:
    """Drop samples above ``Q3 + 3*IQR`` (only with 10+ samples).

    Returns ``(kept, q1, q3)`` where the quartiles describe the unfiltered data.
    """
    ordered = sorted(values)
    q1 = percentile(ordered, 25)
    q3 = percentile(ordered, 75)
    if len(ordered) < 10:
        return list(values), q1, q3
    fence = q3 + 3 * (q3 - q1)
    return [v for v in values if v <= fence], q1, q3


def linear_regression_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0
    x_mean = (n - 1) / 2
    y_mean = mean(values)
    numerator = sum((i - x_mean) * (v - y_mean) for i, v in enumerate(values))
    denominator = sum((i - x_mean) ** 2 for i in range(n))
    return numerator / denominator if denominator else 0


def normalized_slope(values: Sequence[float]) -> float:
    """Slope divided by the mean, so 0.1 means a 10% change per step."""
    avg = mean(values)
    if avg == 0:
        return 0
    return linear_regression_slope(values) / avg
