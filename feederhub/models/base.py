"""
SQLAlchemy base configuration and session management.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Designed to be portable between SQLite (dev, tests) and PostgreSQL (prod).

The engine and session factory live on a Database handle instead of
module globals, so each application (and each test) owns its own
connection pool.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from feederhub.config import DatabaseConfig

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Database:
    """
    Engine plus session factory for one database.

    Every connection is opened with a lock/statement timeout so that no
    storage call can block indefinitely.
    """

    def __init__(self, db_config: DatabaseConfig):
        self.config = db_config

        engine_kwargs = {
            'echo': db_config.echo,
        }

        if db_config.is_sqlite:
            # busy timeout applies to every statement on the connection
            engine_kwargs['connect_args'] = {
                'check_same_thread': False,
                'timeout': db_config.timeout_seconds,
            }
            if db_config.is_memory:
                # One shared connection, otherwise each checkout sees an empty database
                engine_kwargs['poolclass'] = StaticPool
        else:
            timeout_ms = int(db_config.timeout_seconds * 1000)
            engine_kwargs['connect_args'] = {
                'options': f'-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}',
                'connect_timeout': max(1, int(db_config.timeout_seconds)),
            }
            engine_kwargs['pool_timeout'] = db_config.timeout_seconds
            engine_kwargs['pool_pre_ping'] = True

        self.engine = create_engine(db_config.url, **engine_kwargs)

        if db_config.is_sqlite:
            event.listen(self.engine, 'connect', _set_sqlite_pragma)

        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,  # Avoid lazy loading issues
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def insert(self, model):
        """
        Dialect-specific INSERT supporting ON CONFLICT upserts.

        Both SQLite and PostgreSQL accept the same on_conflict_do_update
        arguments, so callers stay dialect-agnostic.
        """
        if self.dialect_name == 'postgresql':
            return postgresql.insert(model)
        return sqlite.insert(model)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Usage:
            with database.session() as session:
                session.query(...)

        Automatically handles commit/rollback and session cleanup.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """
        Create all tables if they don't exist.

        For production, use migrations instead.
        """
        # Import for side effect: registers every table on Base.metadata
        import feederhub.models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            return True
        except Exception as e:
            logger.error(f'Database health check failed: {e}')
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite returns DateTime(timezone=True) columns without tzinfo; every
    timestamp this package writes is UTC.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Configure SQLite for concurrent ingestion.

    WAL mode allows concurrent reads during writes - critical for
    a system that's constantly ingesting while serving queries.
    """
    cursor = dbapi_connection.cursor()
    # Write-Ahead Logging for concurrent access
    cursor.execute('PRAGMA journal_mode=WAL')
    # Synchronous=NORMAL balances safety and speed
    cursor.execute('PRAGMA synchronous=NORMAL')
    # Enable foreign keys
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()
