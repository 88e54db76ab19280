from jobqueue.repositories.base_repository import AsyncBaseRepository
from jobqueue.repositories.job_repository import JobRepository

__all__ = [
    'AsyncBaseRepository',
    'JobRepository',
]
