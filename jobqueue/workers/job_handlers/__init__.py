from jobqueue.workers.job_handlers.base_handler import BaseJobHandler
from jobqueue.workers.job_handlers.email_handler import EmailHandler
from jobqueue.workers.job_handlers.image_handler import ImageScanHandler


__all__ = [
    'BaseJobHandler',
    'EmailHandler',
    'ImageScanHandler',
]
