"""
Centralized logger factory
Separate loggers for the request tier, the worker tier and the database layer
"""
import logging

from jobqueue.core.config import settings
from jobqueue.core.logger import setup_logging

_level = logging.getLevelName(settings.LOG_LEVEL.upper())
if not isinstance(_level, int):
    _level = logging.INFO

# Request tier (FastAPI)
api_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='api',
)

# Worker tier (job processing)
worker_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='worker',
)

# Database layer, warnings and errors only
db_logger = setup_logging(
    log_level=max(_level, logging.WARNING),
    log_dir=settings.LOG_DIR,
    app_name='db',
)


def get_logger(name: str):
    """
    Get a logger by name ('api', 'worker', 'database'); defaults to api_logger
    """
    loggers = {
        'api': api_logger,
        'worker': worker_logger,
        'database': db_logger
    }

    return loggers.get(name, api_logger)
