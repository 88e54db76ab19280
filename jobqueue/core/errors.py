"""Error taxonomy for the job queue."""


class JobQueueError(Exception):
    """Base exception for the job queue."""
    pass


class RetryableJobError(JobQueueError):
    """Transient failure; the job is requeued with backoff while attempts remain."""
    pass


class PermanentJobError(JobQueueError):
    """Failure that retrying cannot fix; the job is marked failed immediately."""
    pass


class UnknownJobType(PermanentJobError):
    """No handler is registered for the job type."""
    pass


class JobNotFound(JobQueueError):
    """Job does not exist."""

    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobStateConflict(JobQueueError):
    """Operation is not allowed in the job's current status."""
    pass


class InvalidJobTransition(JobStateConflict):
    """Requested status change is not allowed from the job's current status."""

    def __init__(self, job_id, current_status, target_status):
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Job {job_id} cannot move from '{current_status}' to '{target_status}'"
        )
