"""
Worker Entry Point
Run with: python -m jobqueue.worker_main
"""

import asyncio
import socket
import sys
from typing import Optional

from jobqueue.core.config import Settings, settings
from jobqueue.core.retry import RetryPolicy
from jobqueue.db import database
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.workers.worker import Worker
from jobqueue.core.setup_logger import worker_logger
from jobqueue.core.logger import info, critical


def build_worker(config: Settings = settings, worker_id: Optional[str] = None) -> Worker:
    """
    Create a Worker from settings
    """
    worker = Worker(
        worker_id=worker_id or config.WORKER_ID or socket.gethostname(),
        queues=config.worker_queues or ["default"],
        poll_interval=config.POLL_INTERVAL,
        max_poll_interval=config.MAX_POLL_INTERVAL,
        backoff_factor=config.BACKOFF_FACTOR,
        job_repository=JobRepository(RetryPolicy.from_settings(config)),
        max_concurrent_jobs=config.MAX_CONCURRENT_JOBS,
        job_timeout=config.JOB_TIMEOUT_SECONDS,
        shutdown_timeout=config.SHUTDOWN_TIMEOUT,
    )

    info(worker_logger, "Worker created successfully", context={
        "worker_id": worker.worker_id,
        "queues": worker.queues,
        "max_concurrent_jobs": worker.max_concurrent_jobs,
    })
    return worker


async def main():
    info(worker_logger, "Worker process starting...")

    try:
        info(worker_logger, "Initializing database connection...")
        await database.init_database()

        worker = build_worker()

        # Blocks until shutdown
        await worker.start()

    except Exception as e:
        critical(worker_logger, "Worker failed", context={
            "error": str(e),
            "error_type": type(e).__name__
        }, exc_info=True)
        sys.exit(1)
    finally:
        await database.close_database()

    info(worker_logger, "Worker process terminated")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        info(worker_logger, "Worker stopped by user")
