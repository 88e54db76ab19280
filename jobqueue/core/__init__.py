from jobqueue.core import config
from jobqueue.core.config import settings
from jobqueue.core.setup_logger import get_logger, api_logger, worker_logger, db_logger

__all__ = [
    'config',
    'settings',
    'worker_logger',
    'db_logger',
    'get_logger',
    'api_logger',
]
