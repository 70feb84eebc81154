"""Offline fallback renderer: a small deterministic synth-pop motif generator.

Same (prompt, seed, duration, samplerate) always produces a byte-identical
16-bit stereo WAV. No network access.
"""

import hashlib
import logging
import os
from typing import Optional

import numpy as np
import soundfile as sf

from texttune.renderers.base import (
    RenderBackend,
    RenderError,
    RenderResult,
    normalize_duration,
    normalize_samplerate,
)

logger = logging.getLogger(__name__)

MAJOR_SCALE = np.array([0, 2, 4, 5, 7, 9, 11, 12])
MOTIF_LENGTH = 8
ATTACK = 0.02
DECAY = 0.3
CHORUS_DELAY = 0.002


def stable_hash(text: str) -> int:
    """Process-independent 32-bit hash (``hash()`` is salted per run)."""
    digest = hashlib.sha256((text or "").encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "little")


def synthesize(
    prompt: str,
    seed: Optional[int],
    duration: float,
    samplerate: int,
) -> np.ndarray:
    """Return an (n_frames, 2) int16 array."""
    # Unseeded renders get their own tag so they never match an explicit seed
    if seed is None:
        entropy = [stable_hash(prompt), 0, 0]
    else:
        entropy = [stable_hash(prompt), 1, int(seed) % (2 ** 32)]
    rng = np.random.default_rng(entropy)

    base_freq = 220.0 * 2 ** (int(rng.integers(0, 12)) / 12)
    bpm = 100 + int(rng.integers(0, 40))
    beat = 60.0 / bpm
    motif = rng.choice(MAJOR_SCALE, size=MOTIF_LENGTH)

    total = int(duration * samplerate)
    t = np.arange(total, dtype=np.float64) / samplerate

    # Octave jump every other two-bar section
    bars = np.floor(t / (beat * 4)).astype(np.int64)
    note_pos = t / (beat / 2)
    motif_idx = (np.floor(note_pos) % MOTIF_LENGTH).astype(np.int64)
    semis = motif[motif_idx] + np.where(bars % 2 == 0, 0, 12)
    freq_lead = base_freq * 2 ** (semis / 12)
    freq_bass = base_freq / 2

    lead = np.sin(2 * np.pi * freq_lead * t)
    bass = np.sign(np.sin(2 * np.pi * freq_bass * t))
    arp = np.sin(2 * np.pi * freq_lead * 1.5 * t)

    local = note_pos % 1
    env = np.where(
        local < ATTACK,
        local / ATTACK,
        np.maximum(0.0, 1 - (local - ATTACK) / DECAY),
    )

    left = 0.55 * env * (0.7 * lead + 0.3 * arp) + 0.25 * bass
    lead_delayed = np.sin(2 * np.pi * freq_lead * (t + CHORUS_DELAY))
    right = 0.55 * env * (0.7 * lead_delayed + 0.3 * arp) + 0.25 * bass

    stereo = np.tanh(np.stack([left, right], axis=1))
    return (np.clip(stereo, -1.0, 1.0) * 32767).astype(np.int16)


class SynthBackend(RenderBackend):
    name = "synth"
    model_id = "local-synth"

    def render(
        self,
        prompt: str,
        duration: float,
        samplerate: int,
        seed: Optional[int],
        out_dir: str,
        filename_prefix: str = "track",
    ) -> RenderResult:
        samplerate = normalize_samplerate(samplerate)
        duration = normalize_duration(duration)
        try:
            frames = synthesize(prompt, seed, duration, samplerate)
        except (TypeError, ValueError) as exc:
            raise RenderError(f"Local synthesis failed: {exc}") from exc

        os.makedirs(out_dir, exist_ok=True)
        file_path = os.path.join(out_dir, f"{filename_prefix}.wav")
        sf.write(file_path, frames, samplerate, subtype="PCM_16", format="WAV")
        logger.info(
            "Synthesized %.1fs @ %d Hz -> %s", duration, samplerate, file_path
        )
        return RenderResult(
            file_path=file_path,
            format="wav",
            content_type="audio/wav",
            model_id=self.model_id,
        )
