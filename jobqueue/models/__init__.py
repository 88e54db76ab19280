from jobqueue.models.base_model import BaseModel
from jobqueue.models.jobs_model import Jobs

__all__ = [
    'BaseModel',
    'Jobs',
]
