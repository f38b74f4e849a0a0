"""
Database initialization and connection management utilities.

This module provides functions for initializing the state database, caching
one engine per database URL, and creating sessions that commit on success
and roll back on failure.
"""

import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.orm import Session, sessionmaker

from stack_migration.exceptions import ConfigurationError, StateError
from stack_migration.migration.models import Base
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Engines and session factories, keyed by database URL
_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}
_lock = threading.Lock()


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """
    Enable foreign key constraints for SQLite connections.

    SQLite has foreign keys disabled by default. This event handler
    enables them for each new connection.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:///path/to/state.db)
        echo: Whether to log SQL statements (useful for debugging)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        if database_url.startswith("sqlite"):
            db_path = sqlite_path(database_url)
            if db_path is not None:
                db_path.parent.mkdir(parents=True, exist_ok=True)

            # NullPool: every session gets its own connection, nothing is shared across threads
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        logger.debug("Database engine created", database_url=database_url)
        return engine

    except Exception as e:
        logger.error("Failed to create database engine", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


def sqlite_path(database_url: str) -> Path | None:
    """File path of a SQLite URL, or None for in-memory databases."""
    path = database_url.split(":///", 1)[1] if ":///" in database_url else ""
    if not path or path == ":memory:":
        return None
    return Path(path)


def init_database(database_url: str, echo: bool = False) -> Engine:
    """
    Initialize the state database.

    Creates all tables if they don't exist. This is idempotent and safe
    to call multiple times; the engine is cached per URL.

    Args:
        database_url: Database connection URL
        echo: Whether to log SQL statements

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database initialization fails
    """
    with _lock:
        engine = _engines.get(database_url)
        if engine is not None:
            return engine

        engine = create_database_engine(database_url, echo=echo)
        try:
            Base.metadata.create_all(engine)
        except Exception as e:
            engine.dispose()
            logger.error("Failed to initialize database", error=str(e), database_url=database_url)
            raise ConfigurationError(f"Failed to initialize database: {e}") from e

        _engines[database_url] = engine
        _session_factories[database_url] = sessionmaker(bind=engine, expire_on_commit=False)

        logger.info(
            "Database initialized successfully",
            database_url=database_url,
            tables=len(Base.metadata.tables),
        )
        return engine


def get_engine(database_url: str) -> Engine:
    """Get (initializing if needed) the engine for ``database_url``."""
    return init_database(database_url)


@contextmanager
def get_session(database_url: str) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Automatically commits on success and rolls back on exception.
    Always closes the session when done.

    Usage:
        with get_session(url) as session:
            session.add(obj)

    Args:
        database_url: Database connection URL

    Yields:
        SQLAlchemy Session instance

    Raises:
        StateError: If database operation fails
    """
    init_database(database_url)
    session = _session_factories[database_url]()

    try:
        yield session
        session.commit()

    except StateError:
        session.rollback()
        raise

    except Exception as e:
        session.rollback()
        logger.error("Database session rolled back due to error", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e

    finally:
        session.close()
