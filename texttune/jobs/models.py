"""Request/response shapes for generation jobs."""

from typing import Any, Dict, Optional
from pydantic import BaseModel

from texttune.db.tables import GenerationJob


class GenerationRequest(BaseModel):
    """Raw submission body. Fields are loosely typed and validated in submission.py."""
    prompt: Any = None
    duration: Any = None
    samplerate: Any = 44100
    seed: Any = None
    quality: Any = "draft"


class GenerationParams(BaseModel):
    """Effective render parameters, frozen on the job at creation."""
    duration: float
    samplerate: int = 44100
    seed: Optional[int] = None
    quality: str = "draft"


class SubmitResponse(BaseModel):
    job_id: str
    status: str


class JobStatusResponse(BaseModel):
    status: str
    progress: float
    audio_url: Optional[str] = None
    params: Dict[str, Any] = {}
    error: Optional[str] = None
    error_code: Optional[str] = None
    job_id: str
    track_id: Optional[str] = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobStatusResponse":
        return cls(
            status=job.status,
            progress=job.progress,
            audio_url=job.audio_url,
            params=job.params or {},
            error=job.error,
            error_code=job.error_code,
            job_id=job.id,
            track_id=job.result_track_id,
        )
