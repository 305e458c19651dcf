"""Result types reported by the dispatcher."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class DispatchResult:
    """
    Outcome of one dispatcher tick.

    Attributes:
        run_started_at: UTC time the tick began
        run_finished_at: UTC time the tick ended
        claimed: Jobs moved to PROCESSING by this tick
        completed: Jobs sent successfully
        rescheduled: Jobs put back to PENDING with a later next_attempt
        failed: Jobs that reached FAILED
        lease_lost: Outcomes discarded because another worker reclaimed the job
        errors: Jobs whose outcome could not be recorded (left for recovery)
        skipped: Whether the tick was skipped because the previous one is still running
        error: Message when the claim itself failed
    """

    run_started_at: datetime
    run_finished_at: datetime
    claimed: int = 0
    completed: int = 0
    rescheduled: int = 0
    failed: int = 0
    lease_lost: int = 0
    errors: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.run_finished_at - self.run_started_at).total_seconds()

    @property
    def had_errors(self) -> bool:
        return self.error is not None or self.errors > 0
