from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db import get_db
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.schemas.job_schemas import (
    JobCreate,
    JobResponse,
    JobUpdate,
    JobRequeue,
    JobStats,
    BulkJobCreate,
    BulkJobResponse,
    StaleJobsReset,
)
from jobqueue.constants.queue_status import QueueStatus
from jobqueue.services.job_service import JobService
from jobqueue.workers.handlers import list_handlers

router = APIRouter()

service = JobService(JobRepository())


def get_service() -> JobService:
    return service


@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(
        job_data: JobCreate,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.create_job(job_data, db)


@router.post("/jobs/bulk", response_model=BulkJobResponse, status_code=201)
async def create_jobs_bulk(
        bulk_data: BulkJobCreate,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.create_jobs_bulk(bulk_data, db)


@router.get("/jobs", response_model=List[JobResponse])
async def list_jobs(
        queue_name: Optional[str] = Query(None, description="Filter by queue name"),
        status: Optional[QueueStatus] = Query(None, description="Filter by job status"),
        job_type: Optional[str] = Query(None, description="Filter by job type"),
        skip: int = Query(0, ge=0, description="Number of jobs to skip"),
        limit: int = Query(50, ge=1, le=1000, description="Maximum jobs to return"),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.list_jobs(queue_name, status, job_type, skip, limit, db)


# Fixed paths are registered before /jobs/{job_id}
@router.get("/jobs/types", response_model=List[str])
async def list_job_types():
    return list_handlers()


@router.get("/jobs/stats/overview", response_model=JobStats)
async def get_job_stats(
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_job_stats(db)


@router.get("/jobs/queue/{queue_name}", response_model=List[JobResponse])
async def get_jobs_by_queue(
        queue_name: str,
        status: Optional[QueueStatus] = Query(None, description="Filter by status"),
        limit: int = Query(50, ge=1, le=1000),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_jobs_by_queue(queue_name, status, limit, db)


# Health check endpoints
@router.get("/jobs/health/queued-count")
async def get_queued_jobs_count(
        queue_name: Optional[str] = Query(None),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_status_count(QueueStatus.queued, queue_name, db)


@router.get("/jobs/health/in-progress-count")
async def get_in_progress_jobs_count(
        queue_name: Optional[str] = Query(None),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_status_count(QueueStatus.in_progress, queue_name, db)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
        job_id: int,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_job(job_id, db)


@router.put("/jobs/{job_id}", response_model=JobResponse)
async def update_job(
        job_id: int,
        job_update: JobUpdate,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.update_job(job_id, job_update, db)


@router.post("/jobs/{job_id}/requeue", response_model=JobResponse, status_code=201)
async def requeue_job(
        job_id: int,
        options: Optional[JobRequeue] = None,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.requeue_job(job_id, options or JobRequeue(), db)


# Admin endpoints
@router.post("/admin/jobs/reset-stale", response_model=StaleJobsReset)
async def reset_stale_jobs(
        timeout_minutes: int = Query(30, ge=1, description="Minutes after which running jobs are considered stale"),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.reset_stale_jobs(timeout_minutes, db)


@router.delete("/admin/jobs/cleanup")
async def cleanup_completed_jobs(
        older_than_days: int = Query(7, ge=1, description="Delete completed jobs older than this many days"),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.cleanup_completed_jobs(older_than_days, db)
