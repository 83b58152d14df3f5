"""Sampling engine producing bounded inputs for AI analysis."""

from .briefing import Briefing, FlaggedDateRange, FlaggedTopic
from .context import build_quantitative_context, trend_direction
from .sampler import (
    DYNAMICS_CAP,
    MAX_PROFILED_PARTICIPANTS,
    MIN_ELIGIBLE,
    OVERVIEW_CAP,
    PER_PERSON_CAP,
    AnalysisSamples,
    SimplifiedMessage,
    even_spread,
    sample,
    stratified_sample,
)

__all__ = [
    "DYNAMICS_CAP",
    "MAX_PROFILED_PARTICIPANTS",
    "MIN_ELIGIBLE",
    "OVERVIEW_CAP",
    "PER_PERSON_CAP",
    "AnalysisSamples",
    "Briefing",
    "FlaggedDateRange",
    "FlaggedTopic",
    "SimplifiedMessage",
    "build_quantitative_context",
    "even_spread",
    "sample",
    "stratified_sample",
    "trend_direction",
]
