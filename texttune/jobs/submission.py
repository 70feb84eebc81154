"""Submission-time validation and job creation.

Everything here runs before a job exists: a rejected submission never
produces a job or track row.
"""

import logging
import math
from typing import Any, Optional

from texttune.config import Settings
from texttune.db.tables import GenerationJob
from texttune.jobs.dispatcher import JobDispatcher
from texttune.jobs.models import GenerationParams, GenerationRequest
from texttune.prompts.expander import expand
from texttune.prompts.policy import violates
from texttune.prompts.translate import translate_prompt

logger = logging.getLogger(__name__)


class SubmissionError(Exception):
    """A rejected submission, surfaced as ``{"error": code, **extra}``."""

    def __init__(self, code: str, status_code: int = 400, **extra: Any):
        super().__init__(code)
        self.code = code
        self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.code, **self.extra}


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _as_seed(value: Any) -> Optional[int]:
    num = _as_number(value)
    if num is None or not num.is_integer():
        return None
    return int(num)


def validate_prompt(prompt: Any) -> str:
    if not isinstance(prompt, str) or not prompt.strip():
        raise SubmissionError("invalid_prompt")
    if violates(prompt):
        raise SubmissionError("blocked_prompt")
    return prompt


def build_params(request: GenerationRequest, settings: Settings) -> GenerationParams:
    """Clamp the requested duration and normalise the other parameters."""
    max_duration = settings.max_duration_seconds
    requested = _as_number(request.duration)
    if requested is not None and requested > max_duration:
        shown = int(max_duration) if float(max_duration).is_integer() else max_duration
        raise SubmissionError("duration_too_long", max=shown)

    if requested is None:
        requested = settings.default_duration_seconds
    duration = min(max(1.0, float(requested)), float(max_duration))

    samplerate = _as_number(request.samplerate)
    quality = request.quality if isinstance(request.quality, str) and request.quality else "draft"
    return GenerationParams(
        duration=duration,
        samplerate=int(samplerate) if samplerate is not None else 44100,
        seed=_as_seed(request.seed),
        quality=quality,
    )


async def submit_generation(
    dispatcher: JobDispatcher,
    settings: Settings,
    user_id: str,
    request: GenerationRequest,
) -> GenerationJob:
    """Validate, expand and queue a generation for ``user_id``."""
    prompt = validate_prompt(request.prompt)
    params = build_params(request, settings)

    try:
        model_prompt = await translate_prompt(prompt, settings)
    except Exception:
        logger.exception("Prompt translation failed; using original prompt")
        model_prompt = prompt

    job = GenerationJob(
        user_id=user_id,
        prompt_raw=prompt,
        prompt_expanded=expand(model_prompt or prompt),
        params=params.model_dump(),
    )
    return await dispatcher.submit(job)
