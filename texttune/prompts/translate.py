"""Optional Korean -> English prompt translation via Google Translate v2.

Translation is best-effort: any failure falls back to the original text so a
submission never fails because of it.
"""

import logging
import re
from typing import Optional

import httpx

from texttune.config import Settings

logger = logging.getLogger(__name__)

_HANGUL = re.compile(r"[ㄱ-ㅎ가-힣]")


def contains_korean(text: Optional[str]) -> bool:
    return bool(text) and bool(_HANGUL.search(text))


async def translate_prompt(
    text: Optional[str],
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    original = (text or "").strip()
    if not original or not contains_korean(original):
        return original
    if not settings.google_translate_api_key:
        return original

    form = {
        "q": original,
        "target": settings.translate_target_lang or "en",
        "format": "text",
        "key": settings.google_translate_api_key,
    }
    if settings.translate_source_lang:
        form["source"] = settings.translate_source_lang

    try:
        async with httpx.AsyncClient(transport=transport, timeout=10.0) as client:
            response = await client.post(settings.google_translate_endpoint, data=form)
    except httpx.HTTPError as exc:
        logger.error("Google translation request failed: %s", exc)
        return original

    if response.status_code != 200:
        logger.error(
            "Google translation HTTP error %s: %s", response.status_code, response.text
        )
        return original

    try:
        translated = response.json()["data"]["translations"][0]["translatedText"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        logger.error("Google translation parse error: %s", exc)
        return original

    if isinstance(translated, str) and translated.strip():
        return translated.strip()
    return original
