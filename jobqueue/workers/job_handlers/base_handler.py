"""
Base handler class for all job handlers
"""

from abc import ABC, abstractmethod
from typing import Dict, Any
from jobqueue.core.setup_logger import worker_logger


class BaseJobHandler(ABC):
    """
    Base class for all job handlers.

    execute() raises RetryableJobError for transient problems and
    PermanentJobError when retrying cannot help. Any other exception is
    treated as transient by the worker.
    """

    def __init__(self):
        self.logger = worker_logger

    @abstractmethod
    async def execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute the job handler

        Args:
            payload: Job payload data

        Returns:
            Result dictionary, stored on the completed job
        """
        pass

    @property
    @abstractmethod
    def job_type(self) -> str:
        """Return the job type this handler processes"""
        pass
