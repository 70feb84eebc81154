"""Durable rows for users, generation jobs and tracks."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp; naive datetimes are rejected on write."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(nullable=False, unique=True, index=True)
    name: str = ""
    picture: str = ""
    auth_provider: str = "dev"
    plan: str = "free"
    created_at: datetime = Field(default_factory=utc_now)


class GenerationJob(SQLModel, table=True):
    """One requested audio generation. Mutated only by the scheduler."""

    __tablename__ = "generation_jobs"
    __table_args__ = (Index("idx_jobs_user_created_at", "user_id", "created_at"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", nullable=False)
    prompt_raw: str
    prompt_expanded: str
    params: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default=JobStatus.QUEUED.value, nullable=False, index=True)
    progress: float = 0.0
    created_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    result_track_id: Optional[str] = None
    audio_url: Optional[str] = None

    @property
    def duration(self) -> float:
        return float(self.params.get("duration") or 10)

    @property
    def samplerate(self) -> int:
        return int(self.params.get("samplerate") or 44100)

    @property
    def seed(self) -> Optional[int]:
        return self.params.get("seed")


class Track(SQLModel, table=True):
    """A stored audio artifact produced by a succeeded job."""

    __tablename__ = "tracks"
    __table_args__ = (Index("idx_tracks_user_created_at", "user_id", "created_at"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", nullable=False)
    job_id: Optional[str] = Field(
        default=None, foreign_key="generation_jobs.id", ondelete="SET NULL"
    )
    duration: Optional[float] = None
    samplerate: Optional[int] = None
    bitrate: Optional[int] = None
    format: Optional[str] = None
    storage_key_original: str = Field(nullable=False)
    storage_key_mp3: Optional[str] = None
    public: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    prompt_raw: Optional[str] = None
    prompt_expanded: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
