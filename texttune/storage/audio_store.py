"""On-disk storage for rendered audio, one directory per user."""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "flac": "audio/flac",
    "ogg": "audio/ogg",
    "oga": "audio/ogg",
    "wav": "audio/wav",
}


def content_type_for_format(fmt: Optional[str]) -> str:
    return _CONTENT_TYPES.get((fmt or "").lower(), "audio/wav")


def extension_from_content_type(content_type: Optional[str], default: str = "wav") -> str:
    if not content_type:
        return default
    lowered = content_type.lower()
    if "mpeg" in lowered:
        return "mp3"
    if "flac" in lowered:
        return "flac"
    if "ogg" in lowered:
        return "ogg"
    if "wav" in lowered:
        return "wav"
    return default


class AudioStore:
    """Manages rendered audio files under ``base_dir/<user_id>/``."""

    def __init__(self, base_dir: str):
        self._base_dir = os.path.abspath(base_dir)
        os.makedirs(self._base_dir, exist_ok=True)

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def get_user_dir(self, user_id: str) -> str:
        """Get or create the directory holding a user's tracks."""
        user_dir = os.path.join(self._base_dir, os.path.basename(user_id))
        os.makedirs(user_dir, exist_ok=True)
        return user_dir

    def file_exists(self, path: Optional[str]) -> bool:
        return bool(path) and os.path.isfile(path)

    def remove(self, path: Optional[str]) -> bool:
        """Best-effort delete. Returns True when a file was removed."""
        if not path:
            return False
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not remove audio file %s: %s", path, exc)
            return False
