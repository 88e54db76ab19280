"""Tests for the job handler registry."""

import pytest

from jobqueue.core.errors import PermanentJobError, UnknownJobType
from jobqueue.workers import handlers
from jobqueue.workers.job_handlers import EmailHandler, ImageScanHandler
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler


class ReminderHandler(BaseJobHandler):
    @property
    def job_type(self) -> str:
        return "sendReminder"

    async def execute(self, payload):
        return {"reminded": payload.get("booking_id")}


def test_builtin_handlers_registered():
    assert isinstance(handlers.get_handler("sendEmail"), EmailHandler)
    assert isinstance(handlers.get_handler("scanImage"), ImageScanHandler)
    assert set(handlers.list_handlers()) >= {"sendEmail", "scanImage"}


def test_unknown_type_is_permanent_error():
    with pytest.raises(UnknownJobType, match="generateInvoice") as exc_info:
        handlers.get_handler("generateInvoice")

    assert isinstance(exc_info.value, PermanentJobError)


def test_register_handler(monkeypatch):
    monkeypatch.setattr(handlers, "HANDLERS", dict(handlers.HANDLERS))

    handlers.register_handler(ReminderHandler())

    assert isinstance(handlers.get_handler("sendReminder"), ReminderHandler)
    assert "sendReminder" in handlers.list_handlers()


def test_register_rejects_non_handler():
    with pytest.raises(TypeError):
        handlers.register_handler(object())
