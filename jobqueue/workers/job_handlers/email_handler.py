"""
Email sending job handler
"""
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Dict, Any, Awaitable, Callable, List, Optional

import aiosmtplib

from jobqueue.constants.job_types import JobTypes
from jobqueue.core.config import Settings, settings as default_settings
from jobqueue.core.errors import PermanentJobError, RetryableJobError
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler
from jobqueue.core.logger import info, debug

# Transport errors worth another attempt; anything else from the server is judged by its reply code
TRANSIENT_SMTP_ERRORS = (
    aiosmtplib.SMTPConnectError,
    aiosmtplib.SMTPTimeoutError,
    aiosmtplib.SMTPServerDisconnected,
)


def _recipients(value, field: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and "@" in v for v in value):
        raise PermanentJobError(f"'{field}' must be an email address or a list of addresses")
    return value


class EmailHandler(BaseJobHandler):
    """Handler for email sending jobs"""

    def __init__(
            self,
            settings: Settings = default_settings,
            sender: Optional[Callable[[EmailMessage], Awaitable[Any]]] = None,
    ):
        super().__init__()
        self.settings = settings
        self.sender = sender

    @property
    def job_type(self) -> str:
        return JobTypes.send_email.value

    def build_message(self, payload: Dict[str, Any]) -> EmailMessage:
        """
        Expected payload:
        {
            "to": "recipient@example.com" | ["a@example.com", ...],
            "subject": "Email subject",
            "body": "Plain text body",
            "html": "<p>optional html body</p>",
            "cc": [...], "reply_to": "..."
        }
        """
        to = _recipients(payload.get("to"), "to")
        if not to:
            raise PermanentJobError("Email payload is missing 'to'")

        subject = payload.get("subject")
        if not isinstance(subject, str) or not subject.strip():
            raise PermanentJobError("Email payload is missing 'subject'")

        body = payload.get("body")
        if not isinstance(body, str):
            raise PermanentJobError("Email payload is missing 'body'")

        for field in ("from", "reply_to", "html"):
            if payload.get(field) is not None and not isinstance(payload[field], str):
                raise PermanentJobError(f"'{field}' must be a string")

        cc = _recipients(payload.get("cc"), "cc")

        message = EmailMessage()
        try:
            message["From"] = payload.get("from") or self.settings.SMTP_FROM
            message["To"] = ", ".join(to)
            if cc:
                message["Cc"] = ", ".join(cc)
            if payload.get("reply_to"):
                message["Reply-To"] = payload["reply_to"]
            message["Subject"] = subject
            message["Message-ID"] = make_msgid()
            message.set_content(body)

            html = payload.get("html")
            if html:
                message.add_alternative(html, subtype="html")
        except (ValueError, TypeError) as e:
            # e.g. CR/LF in a header value
            raise PermanentJobError(f"Invalid email payload: {e}") from e

        return message

    async def _smtp_send(self, message: EmailMessage):
        return await aiosmtplib.send(
            message,
            hostname=self.settings.SMTP_HOST,
            port=self.settings.SMTP_PORT,
            username=self.settings.SMTP_USERNAME or None,
            password=self.settings.SMTP_PASSWORD or None,
            start_tls=self.settings.SMTP_USE_TLS,
            timeout=self.settings.SMTP_TIMEOUT,
        )

    async def execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        message = self.build_message(payload)
        debug(self.logger, "Email handler started", context={
            "to": message["To"],
            "subject": message["Subject"],
        })

        sender = self.sender
        if sender is None and self.settings.SMTP_HOST:
            sender = self._smtp_send

        if sender is None:
            # No SMTP server configured: record the delivery instead of sending
            result = {
                "status": "logged",
                "to": message["To"],
                "subject": message["Subject"],
                "message_id": message["Message-ID"],
            }
            info(self.logger, "SMTP not configured, email logged instead of sent", context=result)
            return result

        try:
            await sender(message)
        except TRANSIENT_SMTP_ERRORS as e:
            raise RetryableJobError(f"SMTP unavailable: {e}") from e
        except aiosmtplib.SMTPResponseException as e:
            # 4xx replies are temporary, 5xx are final
            if 400 <= e.code < 500:
                raise RetryableJobError(f"SMTP temporary failure {e.code}: {e.message}") from e
            raise PermanentJobError(f"SMTP rejected message {e.code}: {e.message}") from e
        except aiosmtplib.SMTPException as e:
            raise PermanentJobError(f"SMTP error: {e}") from e

        result = {
            "status": "sent",
            "to": message["To"],
            "subject": message["Subject"],
            "message_id": message["Message-ID"],
        }

        info(self.logger, "Email sent successfully", context=result)
        return result
