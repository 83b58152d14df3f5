"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .models import Platform
from .sampling import Briefing

StageName = Literal["recon", "deep_recon", "main"]


class ExportRequest(BaseModel):
    """A raw chat export with an optional platform hint.

    ``export`` is the file content: text for WhatsApp, a JSON document (or
    its decoded value) for the JSON platforms, or a list of JSON parts for a
    split Messenger/Instagram export.
    """

    model_config = ConfigDict(extra="ignore")

    platform: Platform | None = None
    export: str | dict[str, Any] | list[Any]
    title: str | None = Field(default=None, max_length=200)


class AnalyzeRequest(ExportRequest):
    briefing: Briefing | None = None
    stages: list[StageName] | None = Field(default=None, min_length=1)
