from jobqueue.constants.job_types import JobTypes
from jobqueue.constants.queue_status import QueueStatus, TERMINAL_STATUSES, ALLOWED_TRANSITIONS, can_transition

__all__ = [
    'JobTypes',
    'QueueStatus',
    'TERMINAL_STATUSES',
    'ALLOWED_TRANSITIONS',
    'can_transition',
]
