"""Operator surface: admin service, HTTP API."""

from .service import QueueAdmin, QueueStatus

__all__ = ["QueueAdmin", "QueueStatus"]
