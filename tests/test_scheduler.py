"""Scheduler: FIFO order, single-slot admission, failure handling and recovery."""

import asyncio
import os
import threading

import pytest
from sqlmodel import select

from conftest import FakeBackend, make_job
from texttune.db.session import open_session
from texttune.db.tables import GenerationJob, JobStatus, Track
from texttune.jobs.scheduler import InProcessScheduler, estimate_progress


def all_jobs(engine):
    with open_session(engine) as session:
        return list(session.exec(select(GenerationJob)).all())


def all_tracks(engine):
    with open_session(engine) as session:
        return list(session.exec(select(Track)).all())


def assert_consistent(job, track_store):
    """Exactly one of queued / running / succeeded-with-track / failed-with-error."""
    if job.status == JobStatus.SUCCEEDED.value:
        assert job.result_track_id is not None
        assert track_store.get_for_user(job.result_track_id, job.user_id) is not None
        assert job.error is None and job.error_code is None
    elif job.status == JobStatus.FAILED.value:
        assert job.error_code
        assert job.result_track_id is None
    else:
        assert job.status in (JobStatus.QUEUED.value, JobStatus.RUNNING.value)
        assert job.result_track_id is None
        assert job.error_code is None


def make_scheduler(backend, job_store, track_store, audio_store, **kwargs):
    kwargs.setdefault("progress_interval", 0.01)
    return InProcessScheduler(backend, job_store, track_store, audio_store, **kwargs)


async def run_all(scheduler, jobs):
    await scheduler.start()
    try:
        submitted = [await scheduler.submit(job) for job in jobs]
        await asyncio.wait_for(scheduler.join(), timeout=15)
    finally:
        await scheduler.stop()
    return submitted


def test_estimate_progress_saturates():
    assert estimate_progress(0, 10) == pytest.approx(0.1)
    assert estimate_progress(4, 10) == pytest.approx(0.6)
    assert estimate_progress(1000, 10) == 0.9
    # Short durations use a 3 second floor
    assert estimate_progress(1.5, 1) == pytest.approx(0.6)


async def test_jobs_render_in_fifo_order_one_at_a_time(engine, job_store, track_store, audio_store, user):
    observed_running = []

    def observe(prompt):
        jobs = all_jobs(engine)
        observed_running.append(sum(1 for j in jobs if j.status == JobStatus.RUNNING.value))
        for job in jobs:
            assert_consistent(job, track_store)

    backend = FakeBackend(delay=0.05, on_render=observe)
    scheduler = make_scheduler(backend, job_store, track_store, audio_store)
    prompts = [f"prompt {i}" for i in range(5)]

    submitted = await run_all(scheduler, [make_job(user.id, p) for p in prompts])

    assert backend.calls == prompts
    assert backend.max_active == 1
    assert observed_running == [1] * len(prompts)
    for job in submitted:
        stored = job_store.get_for_user(job.id, user.id)
        assert stored.status == JobStatus.SUCCEEDED.value
        assert stored.progress == 1.0
        assert stored.audio_url == f"/v1/stream/{stored.result_track_id}"
        assert_consistent(stored, track_store)
    assert len(all_tracks(engine)) == len(prompts)


async def test_failed_render_marks_job_failed_and_queue_continues(
    engine, job_store, track_store, audio_store, user
):
    backend = FakeBackend(fail_prompts={"bad"})
    scheduler = make_scheduler(backend, job_store, track_store, audio_store)

    bad, good = await run_all(scheduler, [make_job(user.id, "bad"), make_job(user.id, "good")])

    failed = job_store.get_for_user(bad.id, user.id)
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_code == "model_exploded"
    assert failed.error == "model exploded"
    assert failed.progress == 1.0
    assert failed.finished_at is not None
    assert failed.result_track_id is None

    succeeded = job_store.get_for_user(good.id, user.id)
    assert succeeded.status == JobStatus.SUCCEEDED.value

    tracks = all_tracks(engine)
    assert [t.job_id for t in tracks] == [good.id]


async def test_unexpected_exception_uses_generic_code(job_store, track_store, audio_store, user):
    class BrokenBackend(FakeBackend):
        def render(self, *args, **kwargs):
            raise ValueError("unexpected")

    scheduler = make_scheduler(BrokenBackend(), job_store, track_store, audio_store)
    (job,) = await run_all(scheduler, [make_job(user.id)])

    stored = job_store.get_for_user(job.id, user.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error_code == "render_error"
    assert stored.error == "unexpected"


async def test_render_timeout_fails_job(job_store, track_store, audio_store, user):
    backend = FakeBackend(delay=0.5)
    scheduler = make_scheduler(backend, job_store, track_store, audio_store, render_timeout=0.1)

    (job,) = await run_all(scheduler, [make_job(user.id)])

    stored = job_store.get_for_user(job.id, user.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error_code == "render_timeout"


async def test_timed_out_render_keeps_the_slot_until_it_returns(
    engine, job_store, track_store, audio_store, user
):
    backend = FakeBackend(delay=0.4)
    scheduler = make_scheduler(backend, job_store, track_store, audio_store, render_timeout=0.1)
    prompts = ["first", "second", "third"]

    await scheduler.start()
    try:
        submitted = [await scheduler.submit(make_job(user.id, p)) for p in prompts]
        # Failure is visible before the abandoned render has returned
        for _ in range(100):
            await asyncio.sleep(0.01)
            first = job_store.get_for_user(submitted[0].id, user.id)
            if first.status == JobStatus.FAILED.value:
                break
        assert first.error_code == "render_timeout"
        assert backend.active == 1
        assert backend.calls == ["first"]

        await asyncio.wait_for(scheduler.join(), timeout=15)
    finally:
        await scheduler.stop()

    assert backend.max_active == 1
    assert backend.calls == prompts
    for job in submitted:
        assert job_store.get_for_user(job.id, user.id).error_code == "render_timeout"
    assert all_tracks(engine) == []
    assert os.listdir(audio_store.get_user_dir(user.id)) == []


async def test_store_calls_run_off_the_event_loop_thread(job_store, track_store, audio_store, user):
    loop_thread = threading.get_ident()
    threads = {}

    def record(name, fn):
        def wrapper(*args, **kwargs):
            threads.setdefault(name, set()).add(threading.get_ident())
            return fn(*args, **kwargs)
        return wrapper

    job_store.create = record("create", job_store.create)
    job_store.mark_running = record("mark_running", job_store.mark_running)
    job_store.set_progress = record("set_progress", job_store.set_progress)
    job_store.get_for_user = record("get_for_user", job_store.get_for_user)
    track_store.insert_and_link_to_job = record("commit", track_store.insert_and_link_to_job)

    backend = FakeBackend(delay=0.1)
    scheduler = make_scheduler(backend, job_store, track_store, audio_store, progress_interval=0.01)
    (job,) = await run_all(scheduler, [make_job(user.id)])
    assert (await scheduler.get_status(job.id, user.id)).status == JobStatus.SUCCEEDED.value

    assert set(threads) == {"create", "mark_running", "set_progress", "get_for_user", "commit"}
    for name, seen in threads.items():
        assert loop_thread not in seen, name


async def test_failed_commit_fails_job_and_removes_file(
    monkeypatch, engine, job_store, track_store, audio_store, user
):
    def crash(*args, **kwargs):
        raise RuntimeError("simulated crash")

    monkeypatch.setattr("texttune.db.tracks._link_job", crash)
    scheduler = make_scheduler(FakeBackend(), job_store, track_store, audio_store)

    (job,) = await run_all(scheduler, [make_job(user.id)])

    stored = job_store.get_for_user(job.id, user.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.result_track_id is None
    assert all_tracks(engine) == []
    assert os.listdir(audio_store.get_user_dir(user.id)) == []


async def test_progress_rises_while_rendering(job_store, track_store, audio_store, user):
    seen = []
    backend = FakeBackend(delay=0.3)
    scheduler = make_scheduler(backend, job_store, track_store, audio_store, progress_interval=0.02)
    await scheduler.start()
    try:
        job = await scheduler.submit(make_job(user.id, duration=4))
        for _ in range(100):
            await asyncio.sleep(0.02)
            current = job_store.get_for_user(job.id, user.id)
            if current.status == JobStatus.RUNNING.value:
                seen.append(current.progress)
            if current.status == JobStatus.SUCCEEDED.value:
                break
        await asyncio.wait_for(scheduler.join(), timeout=5)
    finally:
        await scheduler.stop()

    assert seen, "job was never observed running"
    assert seen == sorted(seen)
    assert max(seen) > 0.05
    assert all(p <= 0.9 for p in seen)


async def test_start_recovers_interrupted_and_queued_jobs(job_store, track_store, audio_store, user):
    interrupted = job_store.create(make_job(user.id, "was running"))
    job_store.mark_running(interrupted.id, user.id)
    waiting = job_store.create(make_job(user.id, "was queued"))

    backend = FakeBackend()
    scheduler = make_scheduler(backend, job_store, track_store, audio_store)
    await scheduler.start()
    try:
        await asyncio.wait_for(scheduler.join(), timeout=5)
    finally:
        await scheduler.stop()

    failed = job_store.get_for_user(interrupted.id, user.id)
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_code == "interrupted"
    assert job_store.get_for_user(waiting.id, user.id).status == JobStatus.SUCCEEDED.value
    assert backend.calls == ["was queued"]


def test_capacity_must_be_positive(job_store, track_store, audio_store):
    with pytest.raises(ValueError):
        InProcessScheduler(FakeBackend(), job_store, track_store, audio_store, capacity=0)
