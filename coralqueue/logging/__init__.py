"""Structured logging helpers for queue components."""

import logging
from typing import Optional


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that stamps a component name onto every record.

    Fields passed through ``extra`` at the call site win over the adapter's own.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None):
    """Get a logger, optionally bound to a component label.

    Args:
        name: Logger name (typically __name__)
        component: Component label added to every record (e.g. "dispatcher")

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="dispatcher")
        >>> logger.info("Tick finished", extra={"event": "dispatch.run.completed"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
