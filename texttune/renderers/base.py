"""Render backend interface and shared result/error types."""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

DEFAULT_SAMPLERATE = 44100
MIN_SAMPLERATE = 8000
MAX_SAMPLERATE = 48000


@dataclass
class RenderResult:
    """What a backend produced on disk."""
    file_path: str
    format: str
    content_type: str
    model_id: Optional[str] = None


class RenderError(Exception):
    """A render failed. ``code`` is surfaced as the job's error_code."""

    code = "render_error"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details
        self.user_message = message


def normalize_samplerate(value: Any) -> int:
    """Clamp to the supported 8k-48k range; invalid values become 44100."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SAMPLERATE
    if not math.isfinite(num) or num <= 0:
        return DEFAULT_SAMPLERATE
    return int(min(MAX_SAMPLERATE, max(MIN_SAMPLERATE, round(num))))


def normalize_duration(value: Any, default: float = 12.0) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(num) or num <= 0:
        return default
    return num


class RenderBackend(ABC):
    """Abstract base class for audio render strategies.

    Exactly one backend is configured per deployment (see registry.select_backend).
    ``render`` is synchronous; the scheduler runs it in a worker thread.
    """

    name: str = "base"

    @abstractmethod
    def render(
        self,
        prompt: str,
        duration: float,
        samplerate: int,
        seed: Optional[int],
        out_dir: str,
        filename_prefix: str = "track",
    ) -> RenderResult:
        """Produce an audio file in ``out_dir``. Raises RenderError on failure."""
        ...

    def describe(self) -> str:
        return self.name
