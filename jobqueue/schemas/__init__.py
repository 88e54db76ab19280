from .job_schemas import (
    JobCreate,
    JobError,
    JobResponse,
    JobUpdate,
    JobRequeue,
    JobStats,
    BulkJobCreate,
    BulkJobResponse,
    StaleJobsReset,
)

__all__ = [
    "JobCreate",
    "JobError",
    "JobResponse",
    "JobUpdate",
    "JobRequeue",
    "JobStats",
    "BulkJobCreate",
    "BulkJobResponse",
    "StaleJobsReset",
]
