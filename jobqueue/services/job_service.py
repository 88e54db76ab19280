from typing import Optional
from sqlalchemy.ext.asyncio.session import AsyncSession
from fastapi import HTTPException

from jobqueue.constants.queue_status import QueueStatus
from jobqueue.core.errors import JobNotFound, JobStateConflict
from jobqueue.core.setup_logger import api_logger
from jobqueue.core.logger import info, error
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.schemas import (
    JobCreate,
    JobResponse,
    BulkJobCreate,
    BulkJobResponse,
    JobUpdate,
    JobRequeue,
    JobStats,
    StaleJobsReset,
)


class JobService:
    """
    Request-tier operations. Producers only record jobs here; handlers run
    in the worker tier.
    """

    def __init__(self, repo: JobRepository):
        self.repo = repo

    async def _fail(self, db: AsyncSession, action: str, e: Exception):
        await db.rollback()
        error(api_logger, f"Failed to {action}", context={
            "error": str(e),
            "error_type": type(e).__name__,
        })
        raise HTTPException(status_code=500, detail=f"Failed to {action}: {str(e)}")

    async def create_job(self, job_data: JobCreate, db: AsyncSession) -> JobResponse:
        """
        Enqueue one job and commit before returning.
        """
        try:
            job = await self.repo.enqueue_job(
                db,
                job_type=job_data.job_type,
                payload=job_data.payload,
                queue_name=job_data.queue_name,
                scheduled_at=job_data.scheduled_at,
                max_tries=job_data.max_tries
            )
            await db.commit()
        except Exception as e:
            await self._fail(db, "create job", e)

        info(api_logger, "Job enqueued", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "queue_name": job.queue_name,
        })
        return JobResponse.model_validate(job)

    async def create_jobs_bulk(self, bulk_data: BulkJobCreate, db: AsyncSession) -> BulkJobResponse:
        """
        Enqueue several jobs in one transaction; either all are recorded or none.
        """
        try:
            jobs = await self.repo.enqueue_jobs(db, [
                {
                    "job_type": job_data.job_type,
                    "payload": job_data.payload,
                    "queue_name": job_data.queue_name,
                    "scheduled_at": job_data.scheduled_at,
                    "max_tries": job_data.max_tries,
                }
                for job_data in bulk_data.jobs
            ])
            await db.commit()
        except Exception as e:
            await self._fail(db, "create jobs", e)

        info(api_logger, "Jobs enqueued in bulk", context={"count": len(jobs)})
        return BulkJobResponse(
            created_jobs=[JobResponse.model_validate(job) for job in jobs],
            total_created=len(jobs),
        )

    async def list_jobs(
            self,
            queue_name: Optional[str],
            status: Optional[QueueStatus],
            job_type: Optional[str],
            skip: int,
            limit: int,
            db: AsyncSession
    ):
        """
        List jobs filtered by queue, status or job type, ordered by id.
        """
        conditions = {}
        if queue_name:
            conditions["queue_name"] = queue_name
        if status:
            conditions["status"] = status.value
        if job_type:
            conditions["job_type"] = job_type

        try:
            jobs = await self.repo.get_by_condition(db, conditions, skip=skip, limit=limit)
        except Exception as e:
            await self._fail(db, "list jobs", e)

        return [JobResponse.model_validate(job) for job in jobs]

    async def get_job(self, job_id: int, db: AsyncSession) -> JobResponse:
        job = await self.repo.get(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        return JobResponse.model_validate(job)

    async def update_job(self, job_id: int, job_update: JobUpdate, db: AsyncSession) -> JobResponse:
        """
        Update payload, schedule or retry limit of a job that is still queued.
        """
        update_data = job_update.model_dump(exclude_unset=True)
        try:
            job = await self.repo.update_queued_job(db, job_id, update_data)
            await db.commit()
        except JobNotFound:
            await db.rollback()
            raise HTTPException(status_code=404, detail="Job not found")
        except JobStateConflict as e:
            await db.rollback()
            raise HTTPException(status_code=409, detail=str(e))
        except Exception as e:
            await self._fail(db, "update job", e)

        return JobResponse.model_validate(job)

    async def requeue_job(self, job_id: int, options: JobRequeue, db: AsyncSession) -> JobResponse:
        """
        Operator action: enqueue a new job from a failed one. The failed job
        stays failed.
        """
        try:
            job = await self.repo.requeue_failed_job(db, job_id, max_tries=options.max_tries)
            await db.commit()
        except JobNotFound:
            await db.rollback()
            raise HTTPException(status_code=404, detail="Job not found")
        except JobStateConflict as e:
            await db.rollback()
            raise HTTPException(status_code=409, detail=str(e))
        except Exception as e:
            await self._fail(db, "requeue job", e)

        info(api_logger, "Failed job requeued", context={
            "job_id": job.id,
            "requeued_from_id": job_id,
        })
        return JobResponse.model_validate(job)

    async def get_job_stats(self, db: AsyncSession) -> JobStats:
        try:
            stats = await self.repo.get_job_stats(db)
        except Exception as e:
            await self._fail(db, "get job stats", e)

        return JobStats(**stats)

    async def get_jobs_by_queue(
            self,
            queue_name: str,
            status: Optional[QueueStatus],
            limit: int,
            db: AsyncSession
    ):
        try:
            jobs = await self.repo.get_jobs_by_queue(
                db,
                queue_name=queue_name,
                status=status.value if status else None,
                limit=limit
            )
        except Exception as e:
            await self._fail(db, "get jobs from queue", e)

        return [JobResponse.model_validate(job) for job in jobs]

    async def get_status_count(self, status: QueueStatus, queue_name: Optional[str], db: AsyncSession):
        """
        Count of jobs in one status, for monitoring.
        """
        try:
            count = await self.repo.get_status_count(db, status, queue_name)
        except Exception as e:
            await self._fail(db, f"count {status.value} jobs", e)

        return {f"{status.value}_jobs": count, "queue": queue_name or "all"}

    # Admin operations
    async def reset_stale_jobs(self, timeout_minutes: int, db: AsyncSession) -> StaleJobsReset:
        """
        Recover jobs whose worker died mid-run.
        """
        try:
            counts = await self.repo.reset_stale_jobs(db, timeout_minutes)
            await db.commit()
        except Exception as e:
            await self._fail(db, "reset stale jobs", e)

        info(api_logger, "Stale jobs reset", context=counts)
        return StaleJobsReset(**counts)

    async def cleanup_completed_jobs(self, older_than_days: int, db: AsyncSession):
        """
        Permanently delete completed jobs older than the given number of days.
        """
        try:
            count = await self.repo.cleanup_completed_jobs(db, older_than_days)
            await db.commit()
        except Exception as e:
            await self._fail(db, "cleanup jobs", e)

        return {"message": f"Deleted {count} completed jobs older than {older_than_days} days", "deleted": count}
