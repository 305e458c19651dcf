"""Periodic execution of dispatcher ticks."""

from .service import SchedulerService

__all__ = [
    "SchedulerService",
]
