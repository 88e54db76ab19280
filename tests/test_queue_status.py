"""Tests for the job status state machine."""

import pytest

from jobqueue.constants.queue_status import QueueStatus, TERMINAL_STATUSES, can_transition


@pytest.mark.parametrize("current,target", [
    (QueueStatus.queued, QueueStatus.in_progress),
    (QueueStatus.in_progress, QueueStatus.completed),
    (QueueStatus.in_progress, QueueStatus.failed),
    (QueueStatus.in_progress, QueueStatus.queued),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (QueueStatus.queued, QueueStatus.completed),
    (QueueStatus.queued, QueueStatus.failed),
    (QueueStatus.completed, QueueStatus.queued),
    (QueueStatus.failed, QueueStatus.queued),
    (QueueStatus.failed, QueueStatus.in_progress),
])
def test_forbidden_transitions(current, target):
    assert not can_transition(current, target)


def test_terminal_statuses_have_no_way_out():
    for status in TERMINAL_STATUSES:
        assert not any(can_transition(status, target) for target in QueueStatus)
