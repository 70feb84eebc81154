"""Track persistence and the atomic track-insert + job-success commit."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from texttune.db.jobs import load_job
from texttune.db.session import open_session
from texttune.db.tables import JobStatus, Track


class JobUpdateError(RuntimeError):
    """The job side of a success commit matched no running job."""


def _link_job(
    session: Session,
    job_id: str,
    user_id: str,
    track_id: str,
    finished_at: datetime,
    audio_url: str,
) -> None:
    job = load_job(session, job_id, user_id, [JobStatus.RUNNING])
    if job is None:
        raise JobUpdateError(f"job_update_failed: {job_id}")
    job.status = JobStatus.SUCCEEDED.value
    job.progress = 1.0
    job.finished_at = finished_at
    job.error_code = None
    job.error = None
    job.result_track_id = track_id
    job.audio_url = audio_url
    session.add(job)


class TrackStore:
    def __init__(self, engine: Engine):
        self._engine = engine

    def insert_and_link_to_job(
        self,
        track: Track,
        job_id: str,
        user_id: str,
        finished_at: datetime,
        audio_url: str,
    ) -> Track:
        """Insert ``track`` and mark its job succeeded in one transaction.

        Either both rows change or neither does; a missing/non-running job
        raises JobUpdateError after rolling the track insert back.
        """
        with open_session(self._engine) as session:
            with session.begin():
                session.add(track)
                session.flush()
                _link_job(session, job_id, user_id, track.id, finished_at, audio_url)
        return track

    def get_for_user(self, track_id: str, user_id: str) -> Optional[Track]:
        with open_session(self._engine) as session:
            stmt = select(Track).where(Track.id == track_id, Track.user_id == user_id)
            return session.exec(stmt).first()

    def list_by_user(self, user_id: str, limit: int = 20) -> List[Track]:
        with open_session(self._engine) as session:
            stmt = (
                select(Track)
                .where(Track.user_id == user_id)
                .order_by(Track.created_at.desc())
                .limit(limit)
            )
            return list(session.exec(stmt).all())

    def delete_for_user(self, track_id: str, user_id: str) -> Optional[Track]:
        """Delete the row and return it so the caller can remove the stored file."""
        with open_session(self._engine) as session:
            stmt = select(Track).where(Track.id == track_id, Track.user_id == user_id)
            track = session.exec(stmt).first()
            if track is None:
                return None
            session.delete(track)
            session.commit()
        return track
