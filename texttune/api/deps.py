"""FastAPI dependencies resolving the objects wired up during lifespan."""

from fastapi import HTTPException, Request

from texttune.config import Settings
from texttune.db.tracks import TrackStore
from texttune.db.users import UserStore
from texttune.jobs.scheduler import InProcessScheduler
from texttune.storage.audio_store import AudioStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_scheduler(request: Request) -> InProcessScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="scheduler_not_ready")
    return scheduler


def get_track_store(request: Request) -> TrackStore:
    return request.app.state.track_store


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def get_audio_store(request: Request) -> AudioStore:
    return request.app.state.audio_store
