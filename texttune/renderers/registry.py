"""Startup-time choice of the single render backend for this deployment."""

import logging

from texttune.config import Settings
from texttune.renderers.base import RenderBackend
from texttune.renderers.inference import InferenceBackend
from texttune.renderers.spaces import SpaceBackend
from texttune.renderers.synth import SynthBackend

logger = logging.getLogger(__name__)

BACKEND_CHOICES = ("auto", "space", "inference", "synth")


def resolve_backend_name(settings: Settings) -> str:
    """Explicit setting wins; ``auto`` prefers space, then inference, then synth."""
    choice = (settings.render_backend or "auto").strip().lower()
    if choice not in BACKEND_CHOICES:
        raise ValueError(
            f"Unknown render_backend '{settings.render_backend}'. "
            f"Available: {list(BACKEND_CHOICES)}"
        )
    if choice != "auto":
        return choice
    if settings.hf_space_id:
        return "space"
    if settings.hf_api_token:
        return "inference"
    return "synth"


def select_backend(settings: Settings) -> RenderBackend:
    name = resolve_backend_name(settings)
    if name == "space":
        backend = SpaceBackend(settings.hf_space_id, access_token=settings.hf_api_token)
    elif name == "inference":
        backend = InferenceBackend(
            settings.hf_api_token,
            model_id=settings.hf_model_id,
            api_url=settings.hf_api_url,
            endpoint=settings.hf_inference_endpoint,
            max_retries=settings.inference_max_retries,
        )
    else:
        backend = SynthBackend()
    logger.info("Render backend: %s", backend.describe())
    return backend
