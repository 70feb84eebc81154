"""In-process generation scheduler.

Jobs are rendered strictly one at a time (capacity 1: the backing model slot
cannot serve concurrent requests) in FIFO submission order. Each job moves
queued -> running -> succeeded | failed; the success path inserts the track
and finishes the job in a single transaction.
"""

import asyncio
import functools
import logging
import time
from contextlib import suppress
from typing import Any, Callable, List, Optional, Set

from texttune.db.jobs import JobStore
from texttune.db.tables import GenerationJob, JobStatus, Track, new_id, utc_now
from texttune.db.tracks import TrackStore
from texttune.jobs.dispatcher import JobDispatcher
from texttune.renderers.base import RenderBackend, RenderError, RenderResult
from texttune.storage.audio_store import AudioStore

logger = logging.getLogger(__name__)

RUNNING_PROGRESS = 0.05
MAX_ESTIMATED_PROGRESS = 0.9


def estimate_progress(elapsed: float, duration: float) -> float:
    """Cosmetic wall-clock estimate; the last 10% is left for completion."""
    expected = max(3.0, float(duration or 10) - 2)
    return min(MAX_ESTIMATED_PROGRESS, 0.1 + elapsed / expected)


def stream_url(track_id: str) -> str:
    return f"/v1/stream/{track_id}"


class InProcessScheduler(JobDispatcher):
    """Local async FIFO scheduler. Renders run in a thread executor."""

    def __init__(
        self,
        backend: RenderBackend,
        job_store: JobStore,
        track_store: TrackStore,
        audio_store: AudioStore,
        capacity: int = 1,
        progress_interval: float = 0.5,
        render_timeout: Optional[float] = 600.0,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._backend = backend
        self._job_store = job_store
        self._track_store = track_store
        self._audio_store = audio_store
        self._capacity = capacity
        self._progress_interval = progress_interval
        self._render_timeout = render_timeout or None
        self._queue: asyncio.Queue[GenerationJob] = asyncio.Queue()
        self._queued_ids: Set[str] = set()
        self._workers: List[asyncio.Task] = []
        self._running = False
        self._active = 0

    @property
    def backend(self) -> RenderBackend:
        return self._backend

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def active(self) -> int:
        return self._active

    @property
    def capacity(self) -> int:
        return self._capacity

    async def submit(self, job: GenerationJob) -> GenerationJob:
        stored = await self._offload(self._job_store.create, job)
        await self._enqueue(stored)
        logger.info("Queued job %s for user %s (depth=%d)", stored.id, stored.user_id, self.depth)
        return stored

    async def get_status(self, job_id: str, user_id: str) -> Optional[GenerationJob]:
        return await self._offload(self._job_store.get_for_user, job_id, user_id)

    async def start(self) -> None:
        if self._workers:
            return
        self._running = True
        await self._recover()
        self._workers = [
            asyncio.create_task(self._worker_loop(), name=f"render-worker-{i}")
            for i in range(self._capacity)
        ]
        logger.info(
            "Scheduler started: backend=%s capacity=%d", self._backend.describe(), self._capacity
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with suppress(asyncio.CancelledError):
                await task
        self._workers = []

    async def join(self) -> None:
        """Wait until every job queued so far is terminal and its slot released."""
        await self._queue.join()

    async def _offload(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking store call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _enqueue(self, job: GenerationJob) -> None:
        self._queued_ids.add(job.id)
        await self._queue.put(job)

    async def _recover(self) -> None:
        """Settle rows left behind by a previous process before taking new work."""
        for job in await self._offload(self._job_store.list_by_status, JobStatus.RUNNING):
            logger.warning("Job %s was running at shutdown; marking failed", job.id)
            await self._offload(
                self._job_store.mark_failed,
                job.id, job.user_id, "interrupted",
                "The server restarted while this job was rendering.",
            )
        for job in await self._offload(self._job_store.list_by_status, JobStatus.QUEUED):
            if job.id not in self._queued_ids:
                await self._enqueue(job)

    async def _worker_loop(self) -> None:
        """Process jobs one at a time from the queue."""
        while self._running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            self._queued_ids.discard(job.id)
            try:
                await self._run_job(job)
            finally:
                self._queue.task_done()

    async def _run_job(self, job: GenerationJob) -> None:
        self._active += 1
        try:
            await self._execute(job)
        except Exception as exc:
            logger.exception("Render job %s failed", job.id)
            await self._fail(job, exc)
        finally:
            self._active -= 1

    async def _execute(self, job: GenerationJob) -> None:
        started = await self._offload(
            self._job_store.mark_running, job.id, job.user_id, RUNNING_PROGRESS
        )
        if not started:
            logger.warning("Job %s is no longer queued; skipping", job.id)
            return

        track_id = new_id()
        ticker = asyncio.create_task(self._tick_progress(job))
        try:
            result = await self._render(job, track_id)
        finally:
            ticker.cancel()
            with suppress(asyncio.CancelledError):
                await ticker

        await self._commit(job, track_id, result)

    async def _render(self, job: GenerationJob, track_id: str) -> RenderResult:
        loop = asyncio.get_running_loop()
        out_dir = self._audio_store.get_user_dir(job.user_id)
        call = loop.run_in_executor(
            None,
            functools.partial(
                self._backend.render,
                job.prompt_expanded,
                job.duration,
                job.samplerate,
                job.seed,
                out_dir,
                track_id,
            ),
        )
        if self._render_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout=self._render_timeout)
        except asyncio.TimeoutError:
            error = RenderError(
                f"Rendering did not finish within {self._render_timeout:g} seconds.",
                code="render_timeout",
            )
        # The worker thread cannot be interrupted: report the failure now but
        # keep the slot until the backend returns, then drop its output.
        await self._fail(job, error)
        await self._discard_late_render(job, call)
        raise error

    async def _discard_late_render(self, job: GenerationJob, call: asyncio.Future) -> None:
        logger.warning("Job %s timed out; holding the slot until its render returns", job.id)
        try:
            late = await call
        except Exception as exc:
            logger.info("Abandoned render for job %s ended with %s", job.id, exc)
            return
        self._audio_store.remove(late.file_path)

    async def _tick_progress(self, job: GenerationJob) -> None:
        started = time.monotonic()
        last = RUNNING_PROGRESS
        while True:
            await asyncio.sleep(self._progress_interval)
            progress = estimate_progress(time.monotonic() - started, job.duration)
            if progress <= last:
                continue
            try:
                await self._offload(self._job_store.set_progress, job.id, job.user_id, progress)
                last = progress
            except Exception as exc:
                logger.warning("Progress update for job %s failed: %s", job.id, exc)

    async def _commit(self, job: GenerationJob, track_id: str, result: RenderResult) -> Track:
        finished_at = utc_now()
        track = Track(
            id=track_id,
            user_id=job.user_id,
            job_id=job.id,
            duration=job.duration,
            samplerate=job.samplerate,
            bitrate=None,
            format=result.format or "wav",
            storage_key_original=result.file_path,
            storage_key_mp3=None,
            public=False,
            created_at=finished_at,
            prompt_raw=job.prompt_raw,
            prompt_expanded=job.prompt_expanded,
            params=dict(job.params),
        )
        try:
            await self._offload(
                self._track_store.insert_and_link_to_job,
                track, job.id, job.user_id, finished_at, stream_url(track_id),
            )
        except Exception:
            self._audio_store.remove(result.file_path)
            raise
        logger.info("Job %s succeeded -> track %s (%s)", job.id, track_id, result.format)
        return track

    async def _fail(self, job: GenerationJob, exc: Exception) -> None:
        if isinstance(exc, RenderError):
            code = exc.code
            message = exc.user_message or str(exc)
        else:
            code = "render_error"
            message = str(exc) or exc.__class__.__name__
        try:
            await self._offload(self._job_store.mark_failed, job.id, job.user_id, code, message)
        except Exception:
            logger.exception("Could not record failure for job %s", job.id)
