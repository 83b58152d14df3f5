"""Briefing value object produced by a reconnaissance pass.

A briefing names date ranges and topics the main analysis should look at more
closely. It is passed explicitly into :func:`chatscope.sampling.sample`.
"""

from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone, tzinfo

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_DATE_RE = re.compile(r"^\d{4}-\d{2}(-\d{2})?$")


class _Frozen(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class FlaggedDateRange(_Frozen):
    start: str
    end: str
    reason: str = ""
    priority: str = "medium"

    @field_validator("start", "end")
    @classmethod
    def _check_date(cls, value: str) -> str:
        value = value.strip()
        if not _DATE_RE.match(value):
            raise ValueError("expected YYYY-MM or YYYY-MM-DD")
        _parse_day(value, timezone.utc, end=False)
        return value

    def bounds_ms(self, tz: tzinfo) -> tuple[int, int]:
        """Inclusive start and exclusive end of the range in epoch ms."""
        start = _parse_day(self.start, tz, end=False)
        end = _parse_day(self.end, tz, end=True)
        return start, end


def _parse_day(value: str, tz: tzinfo, *, end: bool) -> int:
    parts = [int(p) for p in value.split("-")]
    year, month = parts[0], parts[1]
    if len(parts) == 3:
        day = parts[2]
    else:
        day = calendar.monthrange(year, month)[1] if end else 1
    moment = datetime(year, month, day, tzinfo=tz)
    ms = int(moment.timestamp() * 1000)
    return ms + 24 * 60 * 60 * 1000 if end else ms


class FlaggedTopic(_Frozen):
    topic: str
    search_keywords: tuple[str, ...] = ()
    reason: str = ""
    priority: str = "medium"

    def keywords(self) -> tuple[str, ...]:
        words = self.search_keywords or (self.topic,)
        return tuple(w.lower() for w in words if w.strip())


class Briefing(_Frozen):
    flagged_date_ranges: tuple[FlaggedDateRange, ...] = ()
    topics: tuple[FlaggedTopic, ...] = Field(default=(), alias="topicsToInvestigate")

    @property
    def is_empty(self) -> bool:
        return not self.flagged_date_ranges and not self.topics
