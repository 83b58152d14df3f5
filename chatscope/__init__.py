"""ChatScope: chat export parsing, metrics, sampling and streamed AI analysis."""

import os

__version__ = "0.4.0"


def build_info() -> dict[str, str | None]:
    """Version plus the build stamp CI writes into the environment."""
    return {
        "version": __version__,
        "build_date": os.getenv("CHATSCOPE_BUILD_DATE") or None,
        "commit_sha": os.getenv("CHATSCOPE_COMMIT_SHA") or None,
    }


__all__ = ["__version__", "build_info"]
