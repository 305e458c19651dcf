"""Context propagation for structured logging.

Fields pushed here (run_id, job_id, worker_id ...) are merged into every log
record emitted inside the scope. Backed by contextvars, so each dispatcher
thread keeps its own context.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the active logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Returns:
        Token to hand back to pop_log_context()
    """
    return LogContextVar.set({**LogContextVar.get(), **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context captured by ``token``."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop every context field. Mostly useful in tests."""
    LogContextVar.set({})


class log_context:
    """Context manager for scoped logging fields.

    Example:
        >>> with log_context(run_id="a1b2", job_id="5f0c..."):
        ...     logger.info("Sending notification")
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False
