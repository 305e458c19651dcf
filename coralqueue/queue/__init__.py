"""Notification queue engine.

- JobStore / SqlJobStore: persisted jobs with atomic claim, resolve and merge-or-create
- Batcher: correlation keys and merge policies applied on enqueue
- BackoffPolicy: retry schedule for failed sends
- Dispatcher: one worker tick (claim, send, resolve)
"""

from .backoff import BackoffDecision, BackoffPolicy, RetryAt, Terminal
from .batcher import Batcher, correlation_key, extract_target
from .dispatcher import Dispatcher
from .models import DispatchResult
from .store import EnqueueOutcome, JobStore, SqlJobStore

__all__ = [
    "JobStore",
    "SqlJobStore",
    "EnqueueOutcome",
    "Batcher",
    "correlation_key",
    "extract_target",
    "BackoffPolicy",
    "BackoffDecision",
    "RetryAt",
    "Terminal",
    "Dispatcher",
    "DispatchResult",
]
