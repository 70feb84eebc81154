"""Generation job persistence, scoped by (job id, owning user id)."""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from texttune.db.session import open_session
from texttune.db.tables import GenerationJob, JobStatus, utc_now


def load_job(
    session: Session,
    job_id: str,
    user_id: str,
    statuses: Optional[Sequence[str]] = None,
) -> Optional[GenerationJob]:
    stmt = select(GenerationJob).where(
        GenerationJob.id == job_id, GenerationJob.user_id == user_id
    )
    if statuses:
        stmt = stmt.where(GenerationJob.status.in_([JobStatus(s).value for s in statuses]))
    return session.exec(stmt).first()


class JobStore:
    """Job rows are only ever touched through this store and the track commit."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def create(self, job: GenerationJob) -> GenerationJob:
        job.status = JobStatus.QUEUED.value
        job.progress = 0.0
        with open_session(self._engine) as session:
            session.add(job)
            session.commit()
            session.refresh(job)
        return job

    def get_for_user(self, job_id: str, user_id: str) -> Optional[GenerationJob]:
        with open_session(self._engine) as session:
            return load_job(session, job_id, user_id)

    def list_by_status(self, status: JobStatus) -> List[GenerationJob]:
        """All jobs in ``status`` across users, oldest first."""
        with open_session(self._engine) as session:
            stmt = (
                select(GenerationJob)
                .where(GenerationJob.status == status.value)
                .order_by(GenerationJob.created_at)
            )
            return list(session.exec(stmt).all())

    def mark_running(self, job_id: str, user_id: str, progress: float = 0.05) -> bool:
        with open_session(self._engine) as session:
            job = load_job(session, job_id, user_id, [JobStatus.QUEUED])
            if job is None:
                return False
            job.status = JobStatus.RUNNING.value
            job.progress = progress
            session.add(job)
            session.commit()
        return True

    def set_progress(self, job_id: str, user_id: str, progress: float) -> bool:
        """Raise the progress of a running job. Never lowers it."""
        with open_session(self._engine) as session:
            job = load_job(session, job_id, user_id, [JobStatus.RUNNING])
            if job is None:
                return False
            if progress <= job.progress:
                return True
            job.progress = min(progress, 1.0)
            session.add(job)
            session.commit()
        return True

    def mark_failed(
        self,
        job_id: str,
        user_id: str,
        error_code: Optional[str],
        error: str,
        finished_at: Optional[datetime] = None,
    ) -> bool:
        with open_session(self._engine) as session:
            job = load_job(
                session, job_id, user_id, [JobStatus.QUEUED, JobStatus.RUNNING]
            )
            if job is None:
                return False
            job.status = JobStatus.FAILED.value
            job.progress = 1.0
            job.finished_at = finished_at or utc_now()
            job.error_code = error_code or "render_error"
            job.error = error
            job.result_track_id = None
            job.audio_url = None
            session.add(job)
            session.commit()
        return True
