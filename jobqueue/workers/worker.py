"""
Main Worker Class
Claims jobs from the durable queue and runs their handlers concurrently,
backing off exponentially while the queue is empty
"""
import asyncio
import signal
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import async_sessionmaker

from jobqueue.constants.queue_status import QueueStatus
from jobqueue.core.errors import InvalidJobTransition, PermanentJobError, RetryableJobError, UnknownJobType
from jobqueue.db import database
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.workers.handlers import get_handler
from jobqueue.core.setup_logger import worker_logger
from jobqueue.core.logger import info, debug, warning, error, critical


class Worker:
    """
    Background job worker.

    Each claimed job runs in its own asyncio task, at most
    max_concurrent_jobs at a time. The queue table is the only thing shared
    with producers and other workers.
    """

    def __init__(
            self,
            worker_id: str,
            queues: List[str],
            poll_interval: float = 1.0,
            max_poll_interval: float = 30.0,
            backoff_factor: float = 1.5,
            job_repository: Optional[JobRepository] = None,
            max_concurrent_jobs: int = 1,
            job_timeout: Optional[float] = None,
            shutdown_timeout: float = 60.0,
            session_factory: Optional[async_sessionmaker] = None,
    ):
        """
        Args:
            worker_id: Unique identifier for this worker instance, stored on claimed jobs
            queues: Queue names to process
            poll_interval: Initial polling interval in seconds
            max_poll_interval: Maximum polling interval in seconds
            backoff_factor: Backoff multiplier when no jobs found
            job_timeout: Seconds a handler may run before the attempt counts as a transient failure
            shutdown_timeout: Seconds to wait for active jobs on shutdown before cancelling them
            session_factory: Session factory; defaults to the one set up by init_database()
        """
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")

        self.worker_id = worker_id
        self.queues = queues
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff_factor = backoff_factor
        self.job_repository = job_repository or JobRepository()
        self.max_concurrent_jobs = max_concurrent_jobs
        self.job_timeout = job_timeout
        self.shutdown_timeout = shutdown_timeout
        self._session_factory = session_factory

        self.active_jobs: Set[asyncio.Task] = set()

        # Current polling interval (starts at poll_interval, increases with backoff)
        self.current_poll_interval = poll_interval

        self.should_shutdown = False
        self._wakeup = asyncio.Event()

        # Statistics
        self.jobs_processed = 0
        self.jobs_succeeded = 0
        self.jobs_retried = 0
        self.jobs_failed = 0

        info(worker_logger, "Worker initialized", context={
            "worker_id": self.worker_id,
            "queues": self.queues,
            "poll_interval": self.poll_interval,
            "max_poll_interval": self.max_poll_interval,
            "backoff_factor": self.backoff_factor,
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "job_timeout": self.job_timeout,
        })

    @property
    def session_factory(self) -> async_sessionmaker:
        factory = self._session_factory or database.SessionLocal
        if factory is None:
            raise RuntimeError("Database is not initialized; call init_database() first")
        return factory

    def setup_signal_handlers(self):
        """Stop gracefully on SIGTERM/SIGINT"""

        def signal_handler(signum, frame=None):
            signal_name = signal.Signals(signum).name
            warning(worker_logger, f"Received {signal_name} signal, initiating graceful shutdown...")
            self.request_shutdown()

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                # Runs inside the loop, so a pending poll sleep wakes immediately
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Windows event loops
                signal.signal(signum, signal_handler)

        info(worker_logger, "Signal handlers registered (SIGTERM, SIGINT)")

    async def start(self, install_signal_handlers: bool = True):
        """
        Run the processing loop until stop() or a shutdown signal
        """
        info(worker_logger, "Worker starting...", context={
            "worker_id": self.worker_id,
            "queues": self.queues
        })

        try:
            if install_signal_handlers:
                self.setup_signal_handlers()

            await self._processing_loop()

        except Exception as e:
            critical(worker_logger, "Worker crashed with unexpected error", context={
                "worker_id": self.worker_id,
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise
        finally:
            if install_signal_handlers:
                self.remove_signal_handlers()
            await self._shutdown()

    async def _processing_loop(self):
        info(worker_logger, "Entering main processing loop...", context={
            "max_concurrent_jobs": self.max_concurrent_jobs,
        })

        while not self.should_shutdown:
            try:
                self._cleanup_completed_tasks()

                available = self._available_slots()

                if available > 0:
                    job = await self._claim_job()

                    if job:
                        info(worker_logger, "Job claimed, creating background task", context={
                            "job_id": job["id"],
                            "job_type": job["job_type"],
                            "queue_name": job["queue_name"],
                            "attempt": job["attempts"],
                            "available_slots": available - 1,
                        })

                        task = asyncio.create_task(self._execute_job(job))
                        self.active_jobs.add(task)

                        # Reset poll interval since we've found a job
                        self.current_poll_interval = self.poll_interval

                    elif not self.active_jobs:
                        # Queue empty and nothing running: back off
                        await self._apply_backoff()
                    else:
                        # Jobs are running, check again soon
                        await self._sleep(self.poll_interval)

                else:
                    debug(worker_logger, "All slots are occupied, waiting...", context={
                        "active_jobs": len(self.active_jobs),
                        "max_concurrent": self.max_concurrent_jobs,
                    })
                    await asyncio.wait(
                        self.active_jobs,
                        timeout=self.poll_interval,
                        return_when=asyncio.FIRST_COMPLETED,
                    )

            except Exception as e:
                error(worker_logger, "Error in processing loop", context={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "worker_id": self.worker_id,
                    "active_jobs": len(self.active_jobs),
                }, exc_info=True)

                await self._sleep(self.poll_interval)

        info(worker_logger, "Exiting main processing loop")
        await self._drain_active_jobs()

    async def _claim_job(self) -> Optional[Dict[str, Any]]:
        """
        Claim one job and commit the claim. Returns a plain snapshot of the
        claimed row so the handler runs without holding a session.
        """
        async with self.session_factory() as db:
            job = await self.job_repository.claim_next_job(
                db=db,
                queue_names=self.queues,
                worker_id=self.worker_id,
            )
            if not job:
                await db.rollback()
                return None

            snapshot = {
                "id": job.id,
                "job_type": job.job_type,
                "queue_name": job.queue_name,
                "payload": dict(job.payload or {}),
                "attempts": job.attempts,
                "max_tries": job.max_tries,
            }
            await db.commit()
            return snapshot

    async def run_once(self) -> bool:
        """
        Claim and process a single job inline.

        Returns:
            True if a job was processed, False if none was available
        """
        job = await self._claim_job()
        if not job:
            return False
        await self._execute_job(job)
        return True

    async def _execute_job(self, job: Dict[str, Any]):
        """
        Run the handler for a claimed job and record the outcome
        """
        job_id = job["id"]
        start_time = datetime.now()

        try:
            try:
                handler = get_handler(job["job_type"])
            except UnknownJobType as e:
                error(worker_logger, "Invalid job type or handler not found", context={
                    "job_id": job_id,
                    "job_type": job["job_type"],
                    "error": str(e),
                })
                await self._record_failure(job, e, retry=False)
                return

            info(worker_logger, "Processing job", context={
                "job_id": job_id,
                "job_type": job["job_type"],
                "handler": handler.__class__.__name__,
                "attempt": job["attempts"],
            })

            try:
                if self.job_timeout:
                    result = await asyncio.wait_for(handler.execute(job["payload"]), self.job_timeout)
                else:
                    result = await handler.execute(job["payload"])
            except asyncio.CancelledError:
                raise
            except PermanentJobError as e:
                await self._record_failure(job, e, retry=False, started=start_time)
            except asyncio.TimeoutError:
                timeout_error = RetryableJobError(f"Handler timed out after {self.job_timeout} seconds")
                await self._record_failure(job, timeout_error, retry=True, started=start_time)
            except Exception as e:
                await self._record_failure(job, e, retry=True, started=start_time)
            else:
                await self._record_success(job, result, started=start_time)

        except asyncio.CancelledError:
            warning(worker_logger, "Job task cancelled, claim left for stale-job recovery", context={
                "job_id": job_id,
            })
            raise
        except Exception as e:
            # Outcome could not be recorded; the job stays in_progress until reset
            error(worker_logger, "Unexpected error in job task", context={
                "job_id": job_id,
                "error": str(e),
                "error_type": type(e).__name__,
            }, exc_info=True)
        finally:
            self.jobs_processed += 1

    async def _record_success(self, job: Dict[str, Any], result: Any, started: datetime):
        if result is not None and not isinstance(result, dict):
            result = {"value": result}

        async with self.session_factory() as db:
            try:
                await self.job_repository.mark_job_completed(
                    db, job["id"], result, attempt=job["attempts"]
                )
                await db.commit()
            except InvalidJobTransition as e:
                await db.rollback()
                warning(worker_logger, "Job finished but its claim was lost, result discarded", context={
                    "job_id": job["id"],
                    "error": str(e),
                })
                return

        self.jobs_succeeded += 1
        duration = (datetime.now() - started).total_seconds()
        info(worker_logger, "Job completed successfully", context={
            "job_id": job["id"],
            "job_type": job["job_type"],
            "duration_seconds": round(duration, 2),
            "attempts": job["attempts"],
        })

    async def _record_failure(
            self,
            job: Dict[str, Any],
            exc: BaseException,
            retry: bool,
            started: Optional[datetime] = None,
    ):
        context = {
            "job_id": job["id"],
            "job_type": job["job_type"],
            "error": str(exc) or type(exc).__name__,
            "error_type": type(exc).__name__,
            "attempts": job["attempts"],
            "max_tries": job["max_tries"],
        }
        if started:
            context["duration_seconds"] = round((datetime.now() - started).total_seconds(), 2)

        async with self.session_factory() as db:
            try:
                updated = await self.job_repository.mark_job_failed(
                    db=db,
                    job_id=job["id"],
                    error_message=context["error"],
                    error_type=context["error_type"],
                    retry=retry,
                    attempt=job["attempts"],
                )
                await db.commit()
            except InvalidJobTransition as e:
                await db.rollback()
                warning(worker_logger, "Job failed but its claim was lost", context={
                    **context, "transition_error": str(e),
                })
                return

        if updated.status == QueueStatus.failed.value:
            self.jobs_failed += 1
            error(worker_logger, "Job permanently failed", context=context)
        else:
            self.jobs_retried += 1
            warning(worker_logger, "Job attempt failed, will retry", context={
                **context, "next_attempt_at": updated.scheduled_at,
            })

    async def _apply_backoff(self):
        """
        Sleep for the current poll interval, growing it up to max_poll_interval
        """
        old_interval = self.current_poll_interval

        self.current_poll_interval = min(
            self.current_poll_interval * self.backoff_factor,
            self.max_poll_interval
        )

        debug(worker_logger, "No jobs available, applying backoff", context={
            "old_interval": round(old_interval, 2),
            "new_interval": round(self.current_poll_interval, 2),
            "max_interval": self.max_poll_interval
        })

        await self._sleep(self.current_poll_interval)

    async def _sleep(self, seconds: float):
        """Sleep that returns early when shutdown is requested"""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                signal.signal(signum, signal.SIG_DFL)

    async def _drain_active_jobs(self):
        if not self.active_jobs:
            return

        warning(worker_logger, f"Waiting for {len(self.active_jobs)} active jobs to complete")
        await asyncio.wait(self.active_jobs, timeout=self.shutdown_timeout)

        remaining_jobs = [task for task in self.active_jobs if not task.done()]
        if remaining_jobs:
            warning(worker_logger, f"Cancelling {len(remaining_jobs)} remaining jobs after timeout")
            for task in remaining_jobs:
                task.cancel()
            await asyncio.gather(*remaining_jobs, return_exceptions=True)

        self._cleanup_completed_tasks()

    async def _shutdown(self):
        """
        Log final statistics
        """
        processed = self.jobs_processed
        info(worker_logger, "Worker statistics", context={
            "worker_id": self.worker_id,
            "jobs_processed": processed,
            "jobs_succeeded": self.jobs_succeeded,
            "jobs_retried": self.jobs_retried,
            "jobs_failed": self.jobs_failed,
            "success_rate": f"{(self.jobs_succeeded / processed * 100) if processed > 0 else 0:.2f}%"
        })

        info(worker_logger, "Worker stopped gracefully", context={
            "worker_id": self.worker_id
        })

    def request_shutdown(self):
        self.should_shutdown = True
        self._wakeup.set()

    async def stop(self):
        """
        Stop the worker gracefully; active jobs are allowed to finish
        """
        warning(worker_logger, "Stop requested", context={
            "worker_id": self.worker_id
        })
        self.request_shutdown()

    def _available_slots(self) -> int:
        return self.max_concurrent_jobs - len(self.active_jobs)

    def _cleanup_completed_tasks(self):
        """
        Drop finished tasks from active_jobs, freeing their slots
        """
        completed = {task for task in self.active_jobs if task.done()}
        if not completed:
            return

        for task in completed:
            if not task.cancelled() and task.exception() is not None:
                exc = task.exception()
                error(worker_logger, "Job task ended with an exception", context={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                })

        self.active_jobs -= completed
