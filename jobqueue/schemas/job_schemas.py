from datetime import datetime
from typing import Dict, Any, Optional, List

from jobqueue.constants.queue_status import QueueStatus
from jobqueue.workers.handlers import list_handlers
from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobCreate(BaseModel):
    """Schema for Job Creation"""

    job_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    queue_name: str = Field(default="default", min_length=1, max_length=100)
    scheduled_at: Optional[datetime] = None
    max_tries: Optional[int] = Field(None, ge=1, le=25)

    @field_validator("job_type")
    @classmethod
    def validate_job_type(cls, v: str) -> str:
        registered = list_handlers()
        if v not in registered:
            raise ValueError(f"Unknown job_type '{v}'. Registered types: {', '.join(registered)}")
        return v


class JobError(BaseModel):
    """One failed attempt in a job's error history."""
    attempt: int
    error: str
    error_type: Optional[str] = None
    retried: bool = False
    timestamp: str


class JobResponse(BaseModel):
    """Schema for job response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_type: str
    payload: Dict[str, Any]
    queue_name: str
    status: QueueStatus
    scheduled_at: datetime
    attempts: int
    max_tries: int
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    errors: List[JobError] = Field(default_factory=list)
    requeued_from_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class JobUpdate(BaseModel):
    """Schema for updating a queued job. Status is never updated here."""
    model_config = ConfigDict(extra="forbid")

    payload: Optional[Dict[str, Any]] = None
    scheduled_at: Optional[datetime] = None
    max_tries: Optional[int] = Field(None, ge=1, le=25)

    @field_validator("payload", "scheduled_at", "max_tries")
    @classmethod
    def reject_null(cls, v, info):
        # Omit a field to leave it unchanged; null would clear a required column
        if v is None:
            raise ValueError(f"'{info.field_name}' cannot be null")
        return v


class JobRequeue(BaseModel):
    """Options for requeueing a failed job as a new job."""
    max_tries: Optional[int] = Field(None, ge=1, le=25)


class JobStats(BaseModel):
    """Schema for job queue statistics."""
    queued_count: int
    in_progress_count: int
    completed_count: int
    failed_count: int
    queue_counts: Dict[str, int]


class BulkJobCreate(BaseModel):
    """Schema for creating multiple jobs at once."""
    jobs: List[JobCreate] = Field(..., min_length=1, max_length=100, description="List of jobs to create")


class BulkJobResponse(BaseModel):
    """Schema for bulk job creation response."""
    created_jobs: List[JobResponse]
    total_created: int


class StaleJobsReset(BaseModel):
    requeued: int
    failed: int

