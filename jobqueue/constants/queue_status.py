from enum import Enum


class QueueStatus(Enum):
    queued = "queued"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = frozenset({QueueStatus.completed, QueueStatus.failed})

# Status moves the core is allowed to make; terminal statuses have none
ALLOWED_TRANSITIONS = {
    QueueStatus.queued: frozenset({QueueStatus.in_progress}),
    QueueStatus.in_progress: frozenset({QueueStatus.queued, QueueStatus.completed, QueueStatus.failed}),
    QueueStatus.completed: frozenset(),
    QueueStatus.failed: frozenset(),
}


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
