"""Retry/backoff policy for failed sends.

The policy is a pure function of the attempt count and the error: it never
touches the store and never reads the clock itself.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from coralqueue.notifications.models import PermanentDeliveryError


@dataclass(frozen=True)
class RetryAt:
    """Reschedule the job for ``at``."""

    at: datetime
    delay_seconds: float


@dataclass(frozen=True)
class Terminal:
    """Give up on the job."""

    reason: str


BackoffDecision = Union[RetryAt, Terminal]


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff.

    ``delay(n) = min(max_delay, initial_delay * multiplier ** (n - 1))`` seconds
    for the n-th failed attempt. With the defaults a job is retried after 2s,
    4s, 8s, ... which matches the ``2 ** attempts`` curve the storefront has
    always used.

    Attributes:
        initial_delay: Delay after the first failure, in seconds (> 0)
        multiplier: Growth factor per attempt (>= 1)
        max_delay: Upper bound on any single delay, in seconds
    """

    initial_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 3600.0

    def __post_init__(self):
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be greater than zero")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be at least initial_delay")

    def delay(self, attempts: int) -> float:
        """Seconds to wait after the given number of attempts (1-based)."""
        exponent = max(attempts, 1) - 1
        try:
            raw = self.initial_delay * (self.multiplier**exponent)
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, raw)

    def next(
        self,
        attempts: int,
        max_attempts: int,
        error: Optional[BaseException],
        now: datetime,
    ) -> BackoffDecision:
        """Decide what happens to a job whose send just failed.

        Args:
            attempts: Attempt count including the send that just failed
            max_attempts: Ceiling configured on the job
            error: The failure raised by the channel
            now: Current time

        Returns:
            RetryAt with the next eligible time, or Terminal
        """
        if isinstance(error, PermanentDeliveryError):
            return Terminal(reason="permanent")
        if attempts >= max_attempts:
            return Terminal(reason="max_attempts_reached")

        seconds = self.delay(attempts)
        return RetryAt(at=now + timedelta(seconds=seconds), delay_seconds=seconds)
