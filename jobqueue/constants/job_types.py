from enum import Enum


class JobTypes(Enum):
    send_email = "sendEmail"
    scan_image = "scanImage"
