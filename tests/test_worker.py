"""Tests for the worker tier."""

import asyncio
import os
import signal
import sys
from typing import Any, Dict

import aiosmtplib
import pytest

from jobqueue.constants.queue_status import QueueStatus
from jobqueue.core.errors import PermanentJobError, RetryableJobError
from jobqueue.db import database
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.core.retry import RetryPolicy
from jobqueue.schemas import JobCreate
from jobqueue.services.job_service import JobService
from jobqueue.workers import handlers
from jobqueue.workers.job_handlers import EmailHandler
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler
from jobqueue.workers.worker import Worker


EMAIL = {"to": "guest@example.com", "subject": "Booking confirmed", "body": "See you soon"}


class RecordingHandler(BaseJobHandler):
    """Succeeds after `failures` failed calls, raising `error` each time."""

    def __init__(self, job_type: str, failures: int = 0, error: Exception = None, delay: float = 0):
        super().__init__()
        self._job_type = job_type
        self.failures = failures
        self.error = error or RetryableJobError("temporarily unavailable")
        self.delay = delay
        self.calls = []

    @property
    def job_type(self) -> str:
        return self._job_type

    async def execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.failures:
            raise self.error
        return {"handled": payload.get("n")}


def make_worker(repo, worker_id="test-worker", **kwargs):
    options = dict(
        worker_id=worker_id,
        queues=["default"],
        poll_interval=0.01,
        max_poll_interval=0.05,
        job_repository=repo,
    )
    options.update(kwargs)
    return Worker(**options)


async def fetch(repo, job_id):
    async with database.SessionLocal() as db:
        return await repo.get(db, job_id)


async def enqueue(repo, job_type="sendEmail", payload=None, **kwargs):
    async with database.SessionLocal() as db:
        job = await repo.enqueue_job(db, job_type=job_type, payload=payload or {}, **kwargs)
        await db.commit()
        return job.id


@pytest.mark.asyncio
async def test_enqueue_returns_before_handler_runs(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail")
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    service = JobService(repo)

    async with database.SessionLocal() as db:
        response = await service.create_job(JobCreate(job_type="sendEmail", payload=EMAIL), db)

    assert response.status == QueueStatus.queued
    assert handler.calls == []

    worker = make_worker(repo)
    assert await worker.run_once() is True
    assert handler.calls == [EMAIL]
    assert (await fetch(repo, response.id)).status == QueueStatus.completed.value


@pytest.mark.asyncio
async def test_transient_failures_then_success(db_engine, repo, monkeypatch):
    attempts = []

    async def flaky_sender(message):
        attempts.append(message["To"])
        if len(attempts) <= 2:
            raise aiosmtplib.SMTPConnectError("connection refused")

    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", EmailHandler(sender=flaky_sender))
    job_id = await enqueue(repo, payload=EMAIL, max_tries=3)
    worker = make_worker(repo)

    for _ in range(3):
        assert await worker.run_once() is True
    assert await worker.run_once() is False

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.completed.value
    assert job.attempts == 3
    assert len(job.errors) == 2
    assert all(e["error_type"] == "RetryableJobError" for e in job.errors)
    assert job.result["status"] == "sent"
    assert worker.jobs_retried == 2
    assert worker.jobs_succeeded == 1


@pytest.mark.asyncio
async def test_retries_exhausted_marks_failed_once(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail", failures=100)
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    job_id = await enqueue(repo, payload=EMAIL, max_tries=2)
    worker = make_worker(repo)

    assert await worker.run_once() is True
    assert await worker.run_once() is True
    assert await worker.run_once() is False

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.failed.value
    assert job.attempts == 2
    assert len(handler.calls) == 2
    assert worker.jobs_failed == 1
    assert worker.jobs_retried == 1


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail", failures=1, error=PermanentJobError("mailbox does not exist"))
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    job_id = await enqueue(repo, payload=EMAIL, max_tries=5)
    worker = make_worker(repo)

    assert await worker.run_once() is True
    assert await worker.run_once() is False

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.failed.value
    assert job.attempts == 1
    assert job.last_error == "mailbox does not exist"


@pytest.mark.asyncio
async def test_malformed_email_fails_on_first_attempt(db_engine, repo, monkeypatch):
    sender_calls = []

    async def sender(message):
        sender_calls.append(message)

    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", EmailHandler(sender=sender))
    job_id = await enqueue(repo, payload={**EMAIL, "subject": "Hi\nBcc: spy@example.com"}, max_tries=5)
    worker = make_worker(repo)

    assert await worker.run_once() is True
    assert await worker.run_once() is False

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.failed.value
    assert job.attempts == 1
    assert job.errors[0]["error_type"] == "PermanentJobError"
    assert sender_calls == []


@pytest.mark.asyncio
async def test_unexpected_exception_is_retried(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail", failures=1, error=KeyError("missing"))
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    job_id = await enqueue(repo, payload=EMAIL, max_tries=2)
    worker = make_worker(repo)

    await worker.run_once()
    await worker.run_once()

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.completed.value
    assert job.errors[0]["error_type"] == "KeyError"


@pytest.mark.asyncio
async def test_unknown_job_type_fails_permanently(db_engine, repo):
    job_id = await enqueue(repo, job_type="generateInvoice", max_tries=3)
    worker = make_worker(repo)

    assert await worker.run_once() is True

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.failed.value
    assert job.attempts == 1
    assert job.errors[0]["error_type"] == "UnknownJobType"


@pytest.mark.asyncio
async def test_handler_timeout_counts_as_transient(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail", delay=1.0)
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    job_id = await enqueue(repo, payload=EMAIL, max_tries=2)
    worker = make_worker(repo, job_timeout=0.05)

    await worker.run_once()

    job = await fetch(repo, job_id)
    assert job.status == QueueStatus.queued.value
    assert "timed out" in job.last_error


@pytest.mark.asyncio
async def test_worker_only_processes_its_queues(db_engine, repo, monkeypatch):
    handler = RecordingHandler("scanImage")
    monkeypatch.setitem(handlers.HANDLERS, "scanImage", handler)
    job_id = await enqueue(repo, job_type="scanImage", queue_name="images")

    assert await make_worker(repo, queues=["default"]).run_once() is False
    assert await make_worker(repo, queues=["images"]).run_once() is True
    assert (await fetch(repo, job_id)).status == QueueStatus.completed.value


@pytest.mark.asyncio
async def test_concurrent_workers_never_share_a_job(db_engine, monkeypatch):
    repo = JobRepository(RetryPolicy(strategy="fixed", base_delay=0))
    handler = RecordingHandler("sendEmail", delay=0.01)
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)

    job_ids = []
    for n in range(20):
        job_ids.append(await enqueue(repo, payload={"n": n}))

    workers = [make_worker(repo, worker_id=f"worker-{i}", max_concurrent_jobs=2) for i in range(3)]
    tasks = [asyncio.create_task(w.start(install_signal_handlers=False)) for w in workers]

    async def all_completed():
        async with database.SessionLocal() as db:
            return await repo.get_status_count(db, QueueStatus.completed) == len(job_ids)

    for _ in range(500):
        if await all_completed():
            break
        await asyncio.sleep(0.02)

    for w in workers:
        await w.stop()
    await asyncio.wait_for(asyncio.gather(*tasks), timeout=10)

    handled = sorted(call["n"] for call in handler.calls)
    assert handled == list(range(20))
    assert sum(w.jobs_succeeded for w in workers) == 20

    async with database.SessionLocal() as db:
        jobs = await repo.get_by_condition(db, {"id": job_ids})
    assert all(job.attempts == 1 for job in jobs)
    assert {job.claimed_by for job in jobs} <= {w.worker_id for w in workers}


@pytest.mark.asyncio
async def test_stop_waits_for_active_jobs(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail", delay=0.2)
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    job_id = await enqueue(repo, payload=EMAIL)
    worker = make_worker(repo)

    task = asyncio.create_task(worker.start(install_signal_handlers=False))
    for _ in range(100):
        if handler.calls:
            break
        await asyncio.sleep(0.01)

    await worker.stop()
    await asyncio.wait_for(task, timeout=5)

    assert (await fetch(repo, job_id)).status == QueueStatus.completed.value
    assert worker.active_jobs == set()


@pytest.mark.asyncio
async def test_shutdown_timeout_leaves_job_in_progress(db_engine, repo, monkeypatch):
    handler = RecordingHandler("sendEmail", delay=5)
    monkeypatch.setitem(handlers.HANDLERS, "sendEmail", handler)
    job_id = await enqueue(repo, payload=EMAIL)
    worker = make_worker(repo, shutdown_timeout=0.05)

    task = asyncio.create_task(worker.start(install_signal_handlers=False))
    for _ in range(100):
        if handler.calls:
            break
        await asyncio.sleep(0.01)

    await worker.stop()
    await asyncio.wait_for(task, timeout=5)

    # cancelled mid-run: recovered later by the stale-job sweep
    assert (await fetch(repo, job_id)).status == QueueStatus.in_progress.value


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are POSIX only")
async def test_sigterm_wakes_idle_worker(db_engine, repo):
    worker = make_worker(repo, poll_interval=30, max_poll_interval=30)

    task = asyncio.create_task(worker.start())
    await asyncio.sleep(0.1)
    os.kill(os.getpid(), signal.SIGTERM)

    await asyncio.wait_for(task, timeout=2)
    assert worker.should_shutdown is True


def test_worker_rejects_zero_concurrency(repo):
    with pytest.raises(ValueError):
        Worker(worker_id="w", queues=["default"], job_repository=repo, max_concurrent_jobs=0)
