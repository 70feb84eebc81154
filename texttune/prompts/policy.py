"""Prompt safety filter applied before a job is created."""

from typing import Optional

BANNED_TERMS = ("hate", "violence", "illegal", "terror", "child", "sexual", "porn")


def violates(prompt: Optional[str]) -> bool:
    """True when the prompt contains any banned term (case-insensitive substring)."""
    text = (prompt or "").lower()
    return any(term in text for term in BANNED_TERMS)
