"""Engine and session lifecycle for the notification job store.

One engine per process. On SQLite every transaction opens with
``BEGIN IMMEDIATE`` so claimers in different threads or processes queue up on
the write lock instead of reading the same PENDING rows.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from coralqueue.logging import get_logger

from .exceptions import DatabaseConnectionError

_engine: Engine | None = None
_session_factory: sessionmaker | None = None

logger = get_logger(__name__, component="database")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def init_database(database_url: str) -> None:
    """Open the job store and create the notification_queue table if needed.

    Calling it again replaces the previous engine.

    Args:
        database_url: e.g. "sqlite:///./data/notification_queue.db"

    Raises:
        DatabaseConnectionError: If the store cannot be opened
    """
    global _engine, _session_factory

    if not database_url or not isinstance(database_url, str):
        raise DatabaseConnectionError("Database URL must be a non-empty string")

    safe_url = _display_url(database_url)
    logger.info(
        "Opening notification store",
        extra={"event": "database.initializing", "database_url": safe_url},
    )

    try:
        is_sqlite = database_url.startswith("sqlite")
        if is_sqlite:
            _ensure_sqlite_directory(database_url)

        close_database()

        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            connect_args=_sqlite_connect_args() if is_sqlite else {},
        )
        if is_sqlite:
            _install_sqlite_hooks(engine)

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        from .schema import create_schema

        create_schema(engine)
    except DatabaseConnectionError:
        raise
    except Exception as e:
        logger.error(f"Failed to open notification store: {e}", exc_info=True)
        raise DatabaseConnectionError(f"Failed to initialize database: {e}") from e

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    logger.info(
        "Notification store ready",
        extra={"event": "database.initialised", "database_url": safe_url},
    )


def _sqlite_connect_args() -> Dict[str, Any]:
    # Sends run on a thread pool that shares the engine
    return {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}


def _ensure_sqlite_directory(database_url: str) -> None:
    database = make_url(database_url).database
    if not database or database == ":memory:":
        return
    directory = Path(database).parent
    if not directory.exists():
        logger.info(f"Creating database directory: {directory}")
        directory.mkdir(parents=True, exist_ok=True)


def _install_sqlite_hooks(engine: Engine) -> None:
    """Take transaction control away from pysqlite.

    pysqlite defers BEGIN until the first write, so two claimers could both
    select the same PENDING row. Issuing BEGIN IMMEDIATE takes the write lock
    up front.
    """

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_SECONDS * 1000}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _display_url(url: str) -> str:
    """Database URL with any password masked."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return url


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """One transaction: commit on clean exit, roll back and re-raise otherwise.

    Raises:
        DatabaseConnectionError: If init_database() has not been called
    """
    if _session_factory is None:
        raise DatabaseConnectionError(
            "Database not initialized. Call init_database() before using get_session()"
        )

    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.debug(
            f"Store transaction rolled back: {e}",
            extra={"event": "database.session.rolled_back", "error_type": type(e).__name__},
        )
        raise
    finally:
        session.close()


def close_database() -> None:
    """Dispose of the engine. Safe to call when nothing is open."""
    global _engine, _session_factory

    if _engine is None:
        return
    logger.info("Closing notification store", extra={"event": "database.closed"})
    _engine.dispose()
    _engine = None
    _session_factory = None
