"""Managed Space renderer (Gradio apps hosted on Hugging Face Spaces).

The Space's declared config is introspected to find the callable endpoint and
to map prompt / duration / sample rate / seed onto its input components by
keyword. The first audio-like output is decoded (local file, data URI, remote
URL or ``{path, url, data}`` dict) and written to the output directory.
"""

import base64
import logging
import math
import os
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
from gradio_client import Client

from texttune.renderers.base import RenderBackend, RenderError, RenderResult
from texttune.storage.audio_store import extension_from_content_type

logger = logging.getLogger(__name__)

PROMPT_KEYWORDS = ("prompt", "description", "text", "lyrics")
DURATION_KEYWORDS = ("duration", "second", "length", "time", "sec")
SAMPLERATE_KEYWORDS = ("sample rate", "samplerate", "hz")
SEED_KEYWORDS = ("seed",)
AUDIO_OUTPUT_TYPES = ("audio", "file", "gallery")

_DATA_URI = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
_PREFERRED_API = re.compile(r"predict|generate|run|music", re.IGNORECASE)

QUOTA_MESSAGE = (
    "The Space's free ZeroGPU quota is used up, so Space inference stopped. "
    "Log in to Hugging Face or set HF_API_TOKEN and try again."
)


class SpaceQuotaError(RenderError):
    code = "space_quota"


def guess_mime_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    lowered = url.lower().split("?", 1)[0]
    if lowered.endswith(".mp3"):
        return "audio/mpeg"
    if lowered.endswith(".flac"):
        return "audio/flac"
    if lowered.endswith(".ogg") or lowered.endswith(".oga"):
        return "audio/ogg"
    if lowered.endswith(".wav"):
        return "audio/wav"
    return None


def is_quota_message(message: Optional[str]) -> bool:
    if not message:
        return False
    lower = message.lower()
    return "zerogpu" in lower or ("login" in lower and "quota" in lower)


def _text_bag(component: Optional[Dict[str, Any]]) -> str:
    component = component or {}
    props = component.get("props") or {}
    value = props.get("value")
    parts = [
        component.get("type"),
        props.get("label"),
        props.get("name"),
        props.get("info"),
        props.get("placeholder"),
        value if isinstance(value, str) else None,
    ]
    return " ".join(str(p) for p in parts if p).lower()


def _matches(text: str, keywords) -> bool:
    return any(k in text for k in keywords)


def _default_value(component: Optional[Dict[str, Any]]) -> Any:
    if not component:
        return None
    props = component.get("props") or {}
    if "value" in props:
        return props["value"]
    ctype = component.get("type")
    if ctype in ("textbox", "textarea"):
        return ""
    if ctype == "slider":
        return props.get("minimum", 0)
    if ctype == "checkbox":
        return bool(props.get("value"))
    return None


def _clamp_number(value: Any, props: Dict[str, Any]) -> Optional[float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    minimum, maximum = props.get("minimum"), props.get("maximum")
    if isinstance(minimum, (int, float)):
        num = max(num, minimum)
    if isinstance(maximum, (int, float)):
        num = min(num, maximum)
    return num


def _first_not_none(*values):
    for value in values:
        if value is not None:
            return value
    return None


def derive_component_value(
    component: Optional[Dict[str, Any]],
    overrides: Dict[str, Any],
    assigned: Dict[str, bool],
) -> Any:
    """Value for one input component. Each semantic field is assigned once."""
    component = component or {}
    props = component.get("props") or {}
    bag = _text_bag(component)
    ctype = (component.get("type") or "").lower()

    if not assigned["prompt"] and _matches(bag, PROMPT_KEYWORDS):
        assigned["prompt"] = True
        return _first_not_none(overrides.get("prompt"), _default_value(component), "")
    if not assigned["duration"] and _matches(bag, DURATION_KEYWORDS):
        assigned["duration"] = True
        return _first_not_none(
            _clamp_number(overrides.get("duration"), props),
            overrides.get("duration"),
            _default_value(component),
        )
    if not assigned["samplerate"] and _matches(bag, SAMPLERATE_KEYWORDS):
        assigned["samplerate"] = True
        return _first_not_none(
            _clamp_number(overrides.get("samplerate"), props),
            overrides.get("samplerate"),
            _default_value(component),
        )
    if not assigned["seed"] and _matches(bag, SEED_KEYWORDS):
        assigned["seed"] = True
        return _first_not_none(
            _clamp_number(overrides.get("seed"), props),
            overrides.get("seed"),
            _default_value(component),
        )

    if ctype == "checkbox" and isinstance(props.get("value"), bool):
        return props["value"]
    if ctype == "slider":
        return _first_not_none(
            _clamp_number(props.get("value"), props),
            props.get("minimum"),
            overrides.get("duration"),
            _default_value(component),
        )
    return _default_value(component)


def build_payload(dependency: Dict[str, Any], components: List[Dict[str, Any]], overrides: Dict[str, Any]) -> List[Any]:
    by_id = {c.get("id"): c for c in components}
    assigned = {"prompt": False, "duration": False, "samplerate": False, "seed": False}
    return [
        derive_component_value(by_id.get(component_id), overrides, assigned)
        for component_id in dependency.get("inputs") or []
    ]


def select_dependency(config: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return (a copy of) the endpoint to call, with its fn_index attached."""
    dependencies = config.get("dependencies") or []
    backend_fns = []
    for index, dep in enumerate(dependencies):
        if dep.get("backend_fn") and dep.get("inputs") and dep.get("outputs"):
            entry = dict(dep)
            entry.setdefault("fn_index", index)
            backend_fns.append(entry)
    visible = [
        dep for dep in backend_fns
        if dep.get("api_name") and dep.get("api_name") != "_check_login_status"
    ]
    for dep in visible:
        if _PREFERRED_API.search(str(dep["api_name"])):
            return dep
    if visible:
        return visible[0]
    return backend_fns[0] if backend_fns else None


def _error_message(exc: BaseException) -> str:
    message = str(exc)
    if message:
        return message
    detail = getattr(exc, "detail", None) or getattr(exc, "message", None)
    return str(detail) if detail else exc.__class__.__name__


def _resolve_url(resource: Optional[str], root: Optional[str]) -> Optional[str]:
    if not resource:
        return None
    if re.match(r"^https?://", resource, re.IGNORECASE):
        return resource
    if not root:
        return None
    return f"{root.rstrip('/')}/{resource.lstrip('/')}"


class SpaceBackend(RenderBackend):
    name = "space"

    def __init__(
        self,
        space_id: Optional[str],
        access_token: Optional[str] = None,
        client_factory: Callable[..., Any] = Client,
        transport: Optional[httpx.BaseTransport] = None,
        download_timeout: float = 120.0,
    ):
        self.space_id = (space_id or "").strip()
        self._access_token = access_token
        self._client_factory = client_factory
        self._transport = transport
        self._download_timeout = download_timeout

    def describe(self) -> str:
        return f"{self.name}:{self.space_id}"

    def _connect(self):
        try:
            return self._client_factory(self.space_id, hf_token=self._access_token or None)
        except Exception as exc:
            message = _error_message(exc)
            if is_quota_message(message):
                raise SpaceQuotaError(QUOTA_MESSAGE, details=message) from exc
            raise RenderError(f"Could not connect to Space {self.space_id}: {message}") from exc

    def _fetch(self, url: str) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token}"} if self._access_token else None
        try:
            with httpx.Client(transport=self._transport, timeout=self._download_timeout) as client:
                response = client.get(url, headers=headers, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise RenderError(f"Failed to download audio from Space output: {exc}") from exc
        if not response.is_success:
            raise RenderError(
                f"Failed to download audio from Space output "
                f"({response.status_code} {response.reason_phrase})"
            )
        content_type = response.headers.get("content-type") or guess_mime_from_url(url) or "audio/wav"
        return {"data": response.content, "content_type": content_type}

    def _decode(self, value: Any, root: Optional[str]) -> Optional[Dict[str, Any]]:
        if not value:
            return None
        if isinstance(value, (list, tuple)):
            for item in value:
                decoded = self._decode(item, root)
                if decoded:
                    return decoded
            return None
        if isinstance(value, str):
            match = _DATA_URI.match(value)
            if match:
                return {"data": base64.b64decode(match.group(2)), "content_type": match.group(1)}
            if os.path.isfile(value):
                with open(value, "rb") as src:
                    data = src.read()
                return {"data": data, "content_type": guess_mime_from_url(value) or "audio/wav"}
            url = _resolve_url(value, root)
            return self._fetch(url) if url else None
        if isinstance(value, dict):
            data = value.get("data")
            if isinstance(data, str) and _DATA_URI.match(data):
                return self._decode(data, root)
            path = value.get("path")
            if path and os.path.isfile(path):
                return self._decode(path, root)
            if value.get("url"):
                url = _resolve_url(value["url"], root)
                if url:
                    return self._fetch(url)
            if path:
                url = _resolve_url(f"/file={path}", root)
                if url:
                    return self._fetch(url)
        return None

    def _extract_audio(self, dependency, components, data, root) -> Optional[Dict[str, Any]]:
        outputs = dependency.get("outputs") or []
        if not isinstance(data, (list, tuple)) or len(outputs) == 1:
            data = [data]
        by_id = {c.get("id"): c for c in components}
        for idx, output_id in enumerate(outputs):
            ctype = ((by_id.get(output_id) or {}).get("type") or "").lower()
            if not ctype or idx >= len(data):
                continue
            if any(t in ctype for t in AUDIO_OUTPUT_TYPES):
                decoded = self._decode(data[idx], root)
                if decoded:
                    return decoded
        return None

    def render(
        self,
        prompt: str,
        duration: float,
        samplerate: int,
        seed: Optional[int],
        out_dir: str,
        filename_prefix: str = "track",
    ) -> RenderResult:
        if not self.space_id:
            raise RenderError("HF_SPACE_ID is required to call a Hugging Face Space.")

        client = self._connect()
        config = getattr(client, "config", None) or {}
        dependency = select_dependency(config)
        if dependency is None:
            raise RenderError(f"Space {self.space_id} does not expose a callable backend function.")

        components = config.get("components") or []
        payload = build_payload(dependency, components, {
            "prompt": prompt,
            "duration": duration,
            "samplerate": samplerate,
            "seed": seed,
        })

        api_name = dependency.get("api_name")
        endpoint = f"/{api_name}" if api_name else f"fn_index={dependency['fn_index']}"
        logger.info("Calling Space %s endpoint %s", self.space_id, endpoint)
        try:
            if api_name:
                result = client.predict(*payload, api_name=f"/{api_name}")
            else:
                result = client.predict(*payload, fn_index=dependency["fn_index"])
        except Exception as exc:
            message = _error_message(exc)
            if is_quota_message(message):
                raise SpaceQuotaError(QUOTA_MESSAGE, details=message) from exc
            raise RenderError(message or "Unknown error while calling the Space.", details=message) from exc

        audio = self._extract_audio(dependency, components, result, config.get("root"))
        if audio is None:
            raise RenderError(
                f"Space {self.space_id} did not return audio data for endpoint {endpoint}."
            )

        ext = extension_from_content_type(audio["content_type"], default="wav")
        os.makedirs(out_dir, exist_ok=True)
        file_path = os.path.join(out_dir, f"{filename_prefix}.{ext}")
        with open(file_path, "wb") as dst:
            dst.write(audio["data"])

        return RenderResult(
            file_path=file_path,
            format=ext,
            content_type=audio["content_type"],
            model_id=self.space_id,
        )
