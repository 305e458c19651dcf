"""Persistence layer for the notification queue table.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None

    # Repository
    - NotificationJobRepository: CAS-guarded operations on notification jobs

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - StoreUnavailable: The job store cannot be reached
    - DatabaseConnectionError: Database connection/initialization failures
    - BatchConflictError: Another writer opened the same batch first

Example usage:
    >>> from coralqueue.persistence import init_database, get_session, NotificationJobRepository
    >>>
    >>> init_database("sqlite:///./data/notification_queue.db")
    >>>
    >>> with get_session() as session:
    ...     repo = NotificationJobRepository(session)
    ...     job = repo.get("6f1c...")
"""

# Database initialization and session management
from .database import close_database, get_session, init_database

# Repository
from .repositories import BatchConflictError, NotificationJobRepository, translate_store_error

# Exceptions
from .exceptions import (
    DatabaseConnectionError,
    PersistenceError,
    StoreUnavailable,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    # Repository
    "NotificationJobRepository",
    "translate_store_error",
    # Exceptions
    "PersistenceError",
    "StoreUnavailable",
    "DatabaseConnectionError",
    "BatchConflictError",
]
