"""
Job Handler Registry
Maps job_type to handler instances
"""

from typing import Dict, List
from jobqueue.workers.job_handlers import EmailHandler, ImageScanHandler
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler
from jobqueue.core.errors import UnknownJobType
from jobqueue.core.setup_logger import worker_logger
from jobqueue.core.logger import info

email_handler = EmailHandler()
image_scan_handler = ImageScanHandler()

# Handler Registry - maps job_type string to handler instance
HANDLERS: Dict[str, BaseJobHandler] = {
    email_handler.job_type: email_handler,
    image_scan_handler.job_type: image_scan_handler,
}


def get_handler(job_type: str) -> BaseJobHandler:
    """
    Get handler instance for a given job type

    Raises:
        UnknownJobType: If job_type is not registered
    """
    handler = HANDLERS.get(job_type)

    if not handler:
        available_types = ", ".join(HANDLERS.keys())
        raise UnknownJobType(
            f"No handler registered for job_type: '{job_type}'. "
            f"Available types: {available_types}"
        )

    return handler


def register_handler(handler: BaseJobHandler) -> None:
    """
    Register a handler, replacing any existing one for the same job type
    """
    if not isinstance(handler, BaseJobHandler):
        raise TypeError("Handler must inherit from BaseJobHandler")

    job_type = handler.job_type
    info(worker_logger, f"Registering handler for job_type: {job_type}")
    HANDLERS[job_type] = handler


def list_handlers() -> List[str]:
    """Get list of all registered job types"""
    return list(HANDLERS.keys())
