"""
Module: funding_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factory creation, and
    the transactional scope utility.  The engine owns the connection pool.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (create_tables imports models lazily so every table is registered).

Invariants enforced:
    - No process-wide engine: callers construct an Engine once (normally in
      funding_services.runtime.LedgerRuntime) and pass it, or a session
      factory bound to it, into every service.
    - PostgreSQL sessions run at READ COMMITTED; the store's row locking
      decides concurrent writers (last writer wins).
    - SQLite engines (tests, local tooling) enforce foreign keys and take the
      write lock at BEGIN, so concurrent writers queue on the busy timeout
      instead of failing a lock upgrade.

Failure modes:
    - sqlalchemy.exc.TimeoutError when no pooled connection frees up within
      pool_timeout seconds (translated by TransactionCoordinator).
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from funding_kernel.logging_config import get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def create_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 0,
    pool_pre_ping: bool = True,
    pool_timeout: float = 2,
    pool_recycle: int = 30,
) -> Engine:
    """
    Build the SQLAlchemy engine (and its connection pool) for a database URL.

    Args:
        database_url: SQLAlchemy URL, e.g. postgresql+psycopg2://user:pw@host/db
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Max connections beyond pool_size.
        pool_pre_ping: Test connections before use (handles stale connections).
        pool_timeout: Seconds to wait for a pooled connection before giving up.
        pool_recycle: Seconds after which an idle connection is recycled.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        engine = _create_sqlite_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    logger.info(
        "engine_initialized",
        extra={
            "dialect": url.get_backend_name(),
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "echo": echo,
        },
    )
    return engine


def _create_sqlite_engine(
    database_url: str,
    echo: bool,
    pool_size: int,
    max_overflow: int,
    pool_timeout: float,
) -> Engine:
    url = make_url(database_url)
    in_memory = url.database in (None, "", ":memory:")

    if in_memory:
        # One shared connection, otherwise every checkout sees an empty database.
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy so BEGIN is emitted below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; objects stay readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
            # Commits on successful exit, rolls back on exception
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create every table known to the ORM metadata (idempotent).

    Used by tests and local tooling; deployed databases are built by the
    migration runner from SQL files.
    """
    from funding_kernel.db.base import Base
    import funding_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from funding_kernel.db.base import Base
    import funding_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
