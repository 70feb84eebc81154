"""Generation job API: submit prompts and poll job status."""

from fastapi import APIRouter, Depends, HTTPException

from texttune.api.deps import get_scheduler, get_settings
from texttune.auth.session import current_user
from texttune.config import Settings
from texttune.db.tables import JobStatus, User
from texttune.jobs.models import GenerationRequest, JobStatusResponse, SubmitResponse
from texttune.jobs.scheduler import InProcessScheduler
from texttune.jobs.submission import submit_generation

router = APIRouter()


@router.post("/generations", response_model=SubmitResponse)
async def create_generation(
    request: GenerationRequest,
    user: User = Depends(current_user),
    scheduler: InProcessScheduler = Depends(get_scheduler),
    settings: Settings = Depends(get_settings),
):
    """Queue a new generation. Poll GET /v1/generations/{id} for progress."""
    job = await submit_generation(scheduler, settings, user.id, request)
    return SubmitResponse(job_id=job.id, status=JobStatus.QUEUED.value)


@router.get("/generations/{job_id}", response_model=JobStatusResponse)
async def get_generation(
    job_id: str,
    user: User = Depends(current_user),
    scheduler: InProcessScheduler = Depends(get_scheduler),
):
    job = await scheduler.get_status(job_id, user.id)
    if job is None:
        raise HTTPException(status_code=404, detail="not_found")
    return JobStatusResponse.from_job(job)
