"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can catch
every store failure with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class StoreUnavailable(PersistenceError):
    """Raised when the job store cannot be reached.

    Covers an uninitialised database, dropped connections, lock timeouts and
    similar operational failures. Enqueue callers receive this synchronously;
    the queue never reports success for a job it did not persist.
    """

    pass


class DatabaseConnectionError(StoreUnavailable):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - SQLite driver not available
    """

    pass

