"""Hosted inference renderer (Hugging Face Inference API / dedicated endpoints).

Transient "model loading" (503) and rate-limit (429) responses are retried
with exponential backoff, honoring the server's ``estimated_time`` hint.
Any other error fails immediately.
"""

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import httpx

from texttune.renderers.base import (
    RenderBackend,
    RenderError,
    RenderResult,
    normalize_duration,
    normalize_samplerate,
)
from texttune.storage.audio_store import extension_from_content_type

logger = logging.getLogger(__name__)

HF_ROUTER_TEMPLATE = "https://router.huggingface.co/hf-inference/models/{model}"
DEFAULT_MODEL_ID = "stabilityai/stable-audio-open-1.0"
RETRY_STATUSES = (429, 503)


def resolve_api_url(
    model_id: str,
    api_url: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> str:
    """Pick the request URL: explicit endpoint > configured base > router template."""
    if endpoint and endpoint.strip():
        return endpoint.strip()

    base = (api_url or "").strip()
    if not base or base == "default":
        return HF_ROUTER_TEMPLATE.replace("{model}", model_id)
    if "{model}" in base:
        return base.replace("{model}", model_id)
    if "/models/" in base:
        return base if base.endswith(model_id) else f"{base.rstrip('/')}/{model_id}"
    return f"{base.rstrip('/')}/models/{model_id}"


def build_parameters(duration: Any, samplerate: Any, seed: Optional[int]) -> Dict[str, Any]:
    seconds = normalize_duration(duration)
    params: Dict[str, Any] = {
        "seconds_total": seconds,
        "audio_end_seconds": seconds,
        "sample_rate": normalize_samplerate(samplerate),
    }
    if isinstance(seed, int) and not isinstance(seed, bool):
        params["seed"] = seed
    return params


class InferenceBackend(RenderBackend):
    name = "inference"

    def __init__(
        self,
        access_token: Optional[str],
        model_id: str = DEFAULT_MODEL_ID,
        api_url: Optional[str] = None,
        endpoint: Optional[str] = None,
        max_retries: int = 3,
        base_delay: float = 1.5,
        timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._access_token = access_token
        self.model_id = model_id
        self.url = resolve_api_url(model_id, api_url, endpoint)
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep

    def describe(self) -> str:
        return f"{self.name}:{self.model_id}"

    def _build_body(self, prompt: str, duration: float, samplerate: int, seed: Optional[int]) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "inputs": prompt,
            "parameters": build_parameters(duration, samplerate, seed),
            "options": {"wait_for_model": True},
        }
        # Dedicated endpoints and Spaces route by body rather than URL path
        is_endpoint = "aws.endpoints.huggingface.cloud" in self.url or "hf.space" in self.url
        if is_endpoint or "/models/" not in self.url:
            body["model"] = self.model_id
        return body

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        delay = self._base_delay * (2 ** attempt)
        try:
            estimated = response.json().get("estimated_time")
        except (ValueError, AttributeError):
            estimated = None
        if isinstance(estimated, (int, float)):
            delay = max(delay, float(estimated))
        return delay

    def _post_with_retry(self, client: httpx.Client, body: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
            "Accept": "application/octet-stream, audio/*, */*",
        }
        attempt = 0
        while True:
            response = client.post(self.url, content=json.dumps(body), headers=headers)
            if response.is_success:
                return response
            if response.status_code not in RETRY_STATUSES or attempt >= self._max_retries:
                return response
            delay = self._retry_delay(response, attempt)
            logger.warning(
                "Inference returned %s (attempt %d/%d); retrying in %.1fs",
                response.status_code, attempt + 1, self._max_retries, delay,
            )
            self._sleep(delay)
            attempt += 1

    def render(
        self,
        prompt: str,
        duration: float,
        samplerate: int,
        seed: Optional[int],
        out_dir: str,
        filename_prefix: str = "track",
    ) -> RenderResult:
        if not self._access_token:
            raise RenderError("HF_API_TOKEN is required to call the Hugging Face Inference API.")

        body = self._build_body(prompt, duration, samplerate, seed)
        try:
            with httpx.Client(transport=self._transport, timeout=self._timeout) as client:
                response = self._post_with_retry(client, body)
        except httpx.HTTPError as exc:
            raise RenderError(f"Hugging Face inference request failed: {exc}") from exc

        if not response.is_success:
            try:
                detail = json.dumps(response.json())
            except ValueError:
                detail = response.text or f"{response.status_code} {response.reason_phrase}"
            raise RenderError(
                f"Hugging Face inference failed via {self.url}: {detail}",
                details={"status": response.status_code},
            )

        content_type = response.headers.get("content-type") or "audio/mpeg"
        ext = extension_from_content_type(content_type, default="mp3")
        os.makedirs(out_dir, exist_ok=True)
        file_path = os.path.join(out_dir, f"{filename_prefix}.{ext}")
        with open(file_path, "wb") as dst:
            dst.write(response.content)

        return RenderResult(
            file_path=file_path,
            format=ext,
            content_type=content_type,
            model_id=self.model_id,
        )
