"""Shared fixtures: a throwaway SQLite database, stores and a fake renderer."""

import os
import threading
import time

import pytest

from texttune.config import Settings
from texttune.db.jobs import JobStore
from texttune.db.session import create_db_engine, init_db
from texttune.db.tables import GenerationJob
from texttune.db.tracks import TrackStore
from texttune.db.users import UserStore
from texttune.renderers.base import RenderBackend, RenderError, RenderResult
from texttune.storage.audio_store import AudioStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "texttune.db"),
        storage_dir=str(tmp_path / "audio"),
        log_file="",
        render_backend="synth",
        progress_interval_seconds=0.05,
        default_duration_seconds=1,
        max_duration_seconds=30,
        hf_space_id=None,
        hf_api_token=None,
        google_translate_api_key=None,
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_path)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def job_store(engine):
    return JobStore(engine)


@pytest.fixture
def track_store(engine):
    return TrackStore(engine)


@pytest.fixture
def user_store(engine):
    return UserStore(engine)


@pytest.fixture
def audio_store(settings):
    return AudioStore(settings.storage_dir)


@pytest.fixture
def user(user_store):
    return user_store.find_or_create_by_email("alice@example.com")


def make_job(user_id, prompt="ambient pads", duration=1, samplerate=8000, seed=None):
    return GenerationJob(
        user_id=user_id,
        prompt_raw=prompt,
        prompt_expanded=prompt,
        params={"duration": duration, "samplerate": samplerate, "seed": seed, "quality": "draft"},
    )


class FakeBackend(RenderBackend):
    """Writes a tiny file after ``delay`` seconds and records concurrency."""

    name = "fake"

    def __init__(self, delay=0.05, fail_prompts=(), on_render=None):
        self.delay = delay
        self.fail_prompts = set(fail_prompts)
        self.on_render = on_render
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def render(self, prompt, duration, samplerate, seed, out_dir, filename_prefix="track"):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(prompt)
        try:
            if self.on_render is not None:
                self.on_render(prompt)
            time.sleep(self.delay)
            if prompt in self.fail_prompts:
                raise RenderError("model exploded", code="model_exploded")
            os.makedirs(out_dir, exist_ok=True)
            path = os.path.join(out_dir, f"{filename_prefix}.wav")
            with open(path, "wb") as f:
                f.write(b"RIFF-fake")
            return RenderResult(path, "wav", "audio/wav", "fake")
        finally:
            with self._lock:
                self.active -= 1
