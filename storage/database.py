"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions.

- Provides connection pooling
- Manages database sessions
- Explicit transaction boundaries (commit or roll back)
- Read snapshots for concurrent tracer queries

============================================================
SNAPSHOT ISOLATION
============================================================
- PostgreSQL: read sessions run at REPEATABLE READ
- SQLite: WAL journal, and the driver's implicit transaction
  handling is replaced by an explicit BEGIN, so every
  statement of a session reads from the same snapshot

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import StoreConfig
from storage.models.base import Base
from storage.repositories.exceptions import ConnectionError, TransactionError


logger = logging.getLogger(__name__)


def _mask(url: str) -> str:
    return url.split("@")[-1]


def create_database_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create SQLAlchemy engine with connection pooling.

    Args:
        database_url: SQLAlchemy URL
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_timeout: Seconds to wait for available connection
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    logger.info(f"Creating database engine for: {_mask(database_url)}")

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )
        _configure_sqlite(engine)
        return engine

    return create_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def _configure_sqlite(engine: Engine) -> None:
    """WAL journal, foreign keys and explicit BEGIN for SQLite."""

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        # Writers take the lock up front (BEGIN IMMEDIATE)
        conn.exec_driver_sql(conn.get_execution_options().get("sqlite_begin", "BEGIN"))


class Database:
    """
    Engine and session factory of one warehouse.

    Usage:
        db = Database.from_config(config.store)
        db.create_all_tables()

        with db.transaction_scope() as session:
            session.add(record)
            # Commits automatically at end
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "Database":
        return cls(create_database_engine(database_url, **kwargs))

    @classmethod
    def from_config(cls, config: StoreConfig) -> "Database":
        return cls.from_url(
            config.database_url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            echo=config.echo,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def is_postgresql(self) -> bool:
        return self._engine.dialect.name == "postgresql"

    def get_session(self) -> Session:
        """
        Get a new database session.

        IMPORTANT: Caller is responsible for committing/closing.
        Prefer using transaction_scope() instead.
        """
        return self._session_factory()

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for explicit transaction boundaries.

        Commits only if no exception occurs.
        Rolls back on ANY exception. SQLAlchemy failures are raised
        as TransactionError, everything else propagates unchanged.
        """
        session = self.get_session()
        try:
            if self._engine.dialect.name == "sqlite":
                session.connection(execution_options={"sqlite_begin": "BEGIN IMMEDIATE"})
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            session.rollback()
            raise TransactionError(
                repository_name="database",
                operation="transaction",
                phase="commit",
                original_error=str(e),
            ) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read_snapshot(self) -> Generator[Session, None, None]:
        """
        Read-only session pinned to one consistent snapshot.

        Always rolled back; nothing read through it can observe a
        partially committed block.
        """
        session = self.get_session()
        try:
            if self.is_postgresql:
                session.connection(
                    execution_options={"isolation_level": "REPEATABLE READ"}
                )
            yield session
        finally:
            session.rollback()
            session.close()

    def verify_connection(self) -> bool:
        """
        Verify database connection is working.

        Raises:
            ConnectionError: If connection fails
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise ConnectionError(
                repository_name="database",
                operation="verify_connection",
                original_error=str(e),
            ) from e

    def create_all_tables(self) -> None:
        """Create all tables defined in ORM models."""
        # Register models with Base
        from storage.models import chain  # noqa: F401

        try:
            Base.metadata.create_all(bind=self._engine)
            logger.info("Database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise TransactionError(
                repository_name="database",
                operation="create_all_tables",
                phase="ddl",
                original_error=str(e),
            ) from e

    def dispose(self) -> None:
        self._engine.dispose()


# =============================================================
# MODULE-LEVEL DATABASE
# =============================================================

_database: Optional[Database] = None


def get_database() -> Database:
    """Get the process-wide database (configure with set_database)."""
    if _database is None:
        raise RuntimeError("Database not initialized; call set_database() first")
    return _database


def set_database(database: Optional[Database]) -> None:
    global _database
    _database = database


__all__ = [
    "Database",
    "create_database_engine",
    "get_database",
    "set_database",
]
