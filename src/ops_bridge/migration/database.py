"""
Database initialization and session management utilities.

Engines and session factories are kept per database URL so that several
task stores (e.g. one per test) can live in the same process.
"""

import threading
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, pool, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ops_bridge.exceptions import ConfigurationError, StateError
from ops_bridge.migration.models import Base
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

_factories: dict[str, sessionmaker] = {}
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


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def create_database_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or any SQLAlchemy URL)
        echo: Whether to log SQL statements (useful for debugging)
        pool_size: Number of connections to maintain in the pool
        max_overflow: Maximum number of connections beyond pool_size
        pool_timeout: Timeout for getting a connection from the pool (seconds)
        pool_recycle: Recycle connections after this many seconds

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite:
            # In-memory databases must share one connection across threads
            poolclass = pool.StaticPool if _is_memory_sqlite(database_url) else pool.NullPool
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=poolclass,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
            )

        logger.debug(
            "database_engine_created",
            database_type="sqlite" if is_sqlite else engine.dialect.name,
        )
        return engine

    except SQLAlchemyError as e:
        raise ConfigurationError(f"Failed to create database engine: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Invalid database URL '{database_url}': {e}") from e


def init_database(database_url: str, echo: bool = False, **pool_options: int) -> sessionmaker:
    """
    Initialize the task database and return its session factory.

    Creates all tables if they don't exist. Idempotent per URL.

    Args:
        database_url: Database connection URL
        echo: Whether to log SQL statements
        **pool_options: pool_size, max_overflow, pool_timeout, pool_recycle

    Returns:
        Session factory bound to the database

    Raises:
        ConfigurationError: If database initialization fails
    """
    with _lock:
        if database_url in _factories:
            return _factories[database_url]

        engine = create_database_engine(database_url, echo=echo, **pool_options)
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            engine.dispose()
            raise ConfigurationError(f"Failed to initialize database: {e}") from e

        factory = sessionmaker(bind=engine, expire_on_commit=False)
        _factories[database_url] = factory
        logger.debug("database_initialized", tables=len(Base.metadata.tables))
        return factory


def dispose_database(database_url: str) -> None:
    """Dispose the engine registered for a URL, if any."""
    with _lock:
        factory = _factories.pop(database_url, None)
    if factory is not None:
        factory.kw["bind"].dispose()


@contextmanager
def get_session(database_url: str) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Automatically commits on success and rolls back on exception.
    Always closes the session when done.

    Args:
        database_url: Database connection URL

    Yields:
        SQLAlchemy Session instance

    Raises:
        StateError: If a database operation fails
    """
    session = init_database(database_url)()

    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("database_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def validate_database_connection(database_url: str) -> bool:
    """
    Validate that a database connection can be established.

    Args:
        database_url: Database connection URL

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = create_database_engine(database_url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        engine.dispose()
        return True
    except (ConfigurationError, SQLAlchemyError) as e:
        logger.warning("database_connection_invalid", error=str(e))
        return False
