"""Tests for the email sending handler."""

from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest

from jobqueue.core.config import Settings
from jobqueue.core.errors import PermanentJobError, RetryableJobError
from jobqueue.workers.job_handlers import EmailHandler


PAYLOAD = {
    "to": ["guest@example.com", "agent@example.com"],
    "subject": "Your trip to Tozeur",
    "body": "Booking confirmed.",
}


def test_job_type():
    assert EmailHandler().job_type == "sendEmail"


def test_build_message():
    handler = EmailHandler(settings=Settings(SMTP_FROM="bookings@example.com"))

    message = handler.build_message({**PAYLOAD, "cc": "ops@example.com", "html": "<p>Booking confirmed.</p>"})

    assert message["From"] == "bookings@example.com"
    assert message["To"] == "guest@example.com, agent@example.com"
    assert message["Cc"] == "ops@example.com"
    assert message["Subject"] == "Your trip to Tozeur"
    assert message["Message-ID"]
    assert message.is_multipart()


@pytest.mark.parametrize("payload,match", [
    ({"subject": "s", "body": "b"}, "missing 'to'"),
    ({"to": "not-an-address", "subject": "s"}, "'to' must be"),
    ({"to": "guest@example.com", "body": "b"}, "missing 'subject'"),
    ({"to": "guest@example.com", "subject": "s"}, "missing 'body'"),
    ({"to": "guest@example.com", "subject": "s", "body": 42}, "missing 'body'"),
    ({"to": "guest@example.com", "subject": "s", "body": "b", "reply_to": ["x@example.com"]}, "'reply_to' must be"),
    ({"to": "guest@example.com", "subject": "s", "body": "b", "html": 1}, "'html' must be"),
])
def test_invalid_payload_is_permanent(payload, match):
    with pytest.raises(PermanentJobError, match=match):
        EmailHandler().build_message(payload)


@pytest.mark.parametrize("field,value", [
    ("subject", "Hello\nBcc: spy@example.com"),
    ("reply_to", "desk@example.com\r\nBcc: spy@example.com"),
])
def test_header_injection_is_permanent(field, value):
    with pytest.raises(PermanentJobError, match="Invalid email payload"):
        EmailHandler().build_message({**PAYLOAD, field: value})


@pytest.mark.asyncio
async def test_malformed_payload_fails_before_sending():
    sender = AsyncMock()
    handler = EmailHandler(sender=sender)

    with pytest.raises(PermanentJobError):
        await handler.execute({**PAYLOAD, "subject": "Hi\r\nBcc: spy@example.com"})

    sender.assert_not_awaited()


@pytest.mark.asyncio
async def test_logs_instead_of_sending_without_smtp():
    handler = EmailHandler(settings=Settings(SMTP_HOST=None))

    result = await handler.execute(PAYLOAD)

    assert result["status"] == "logged"
    assert result["to"] == "guest@example.com, agent@example.com"


@pytest.mark.asyncio
async def test_sends_with_injected_sender():
    sender = AsyncMock()
    handler = EmailHandler(sender=sender)

    result = await handler.execute(PAYLOAD)

    assert result["status"] == "sent"
    sender.assert_awaited_once()
    message = sender.await_args.args[0]
    assert message["Subject"] == "Your trip to Tozeur"


@pytest.mark.asyncio
async def test_sends_through_smtp_when_configured():
    settings = Settings(SMTP_HOST="smtp.example.com", SMTP_PORT=2525, SMTP_USERNAME="user", SMTP_PASSWORD="secret")
    handler = EmailHandler(settings=settings)

    with patch("jobqueue.workers.job_handlers.email_handler.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
        result = await handler.execute(PAYLOAD)

    assert result["status"] == "sent"
    kwargs = mock_send.await_args.kwargs
    assert kwargs["hostname"] == "smtp.example.com"
    assert kwargs["port"] == 2525
    assert kwargs["username"] == "user"


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [
    aiosmtplib.SMTPConnectError("connection refused"),
    aiosmtplib.SMTPTimeoutError("timed out"),
    aiosmtplib.SMTPServerDisconnected("disconnected"),
    aiosmtplib.SMTPResponseException(451, "try again later"),
])
async def test_transient_smtp_errors_are_retryable(exc):
    handler = EmailHandler(sender=AsyncMock(side_effect=exc))

    with pytest.raises(RetryableJobError):
        await handler.execute(PAYLOAD)


@pytest.mark.asyncio
async def test_rejected_message_is_permanent():
    exc = aiosmtplib.SMTPResponseException(550, "mailbox unavailable")
    handler = EmailHandler(sender=AsyncMock(side_effect=exc))

    with pytest.raises(PermanentJobError, match="550"):
        await handler.execute(PAYLOAD)
