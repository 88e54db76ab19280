"""
Retry backoff policy for failed job attempts
"""
from dataclasses import dataclass
from datetime import timedelta

from jobqueue.core.config import Settings, settings as default_settings

EXPONENTIAL = "exponential"
FIXED = "fixed"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Computes how long a failed job waits before it becomes claimable again.

    exponential: base_delay * factor ** (attempt - 1), so 60s, 120s, 240s...
    fixed: base_delay for every attempt
    Both are capped at max_delay.
    """
    strategy: str = EXPONENTIAL
    base_delay: float = 60.0
    factor: float = 2.0
    max_delay: float = 3600.0

    def __post_init__(self):
        if self.strategy not in (EXPONENTIAL, FIXED):
            raise ValueError(f"Unknown retry strategy: '{self.strategy}'")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must not be negative")

    def delay_seconds(self, attempt: int) -> float:
        if self.strategy == FIXED:
            delay = self.base_delay
        else:
            delay = self.base_delay * (self.factor ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def delay(self, attempt: int) -> timedelta:
        return timedelta(seconds=self.delay_seconds(attempt))

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "RetryPolicy":
        return cls(
            strategy=settings.RETRY_STRATEGY.lower(),
            base_delay=settings.RETRY_BASE_DELAY,
            factor=settings.RETRY_BACKOFF_FACTOR,
            max_delay=settings.RETRY_MAX_DELAY,
        )
