"""Deterministic prompt enrichment steering backends toward instrumental output."""

from typing import Optional

PROMPT_SUFFIX = ", instrumental, clean mix, mastered, no vocals"


def expand(raw: Optional[str]) -> str:
    base = (raw or "").strip()
    if not base:
        return ""
    return f"{base}{PROMPT_SUFFIX}"
