"""
Storage - Database Engine and Sessions.

============================================================
RESPONSIBILITY
============================================================
- Resolves the database URL (DATABASE_URL, default local SQLite)
- Creates engines (pooled for servers, static pool for in-memory SQLite)
- Session factory and transactional session scope
- Schema creation

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storage.models import Base


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///holdings.db"

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


class DatabasePersistenceError(Exception):
    """Raised when a transaction cannot be committed."""


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.info(f"DATABASE_URL not set, using default: {url}")
    return url


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create a SQLAlchemy engine.

    Args:
        database_url: Explicit URL; defaults to get_database_url()
        pool_size: Connections kept in pool (server databases)
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements
    """
    url = database_url or get_database_url()
    logger.info(f"Creating database engine for: {url.split('@')[-1]}")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if _is_memory_sqlite(url):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
    else:
        engine = create_engine(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


def get_engine() -> Engine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_database_engine()
    return _engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to engine (or the process-wide engine)."""
    global _SessionFactory

    if engine is not None:
        return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionFactory


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Explicit transaction boundary.

    Commits only if no exception occurs; rolls back on ANY exception.

    Usage:
        with session_scope(factory) as session:
            FinancialRecordRepository(session).add_many(rows)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database transaction failed, rolling back: {e}")
        session.rollback()
        raise DatabasePersistenceError(f"Transaction failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_schema(engine: Optional[Engine] = None) -> None:
    """Create all holdings tables that do not exist yet."""
    engine = engine or get_engine()
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database tables ready: {', '.join(sorted(Base.metadata.tables))}")


def reset_engine() -> None:
    """Dispose the process-wide engine (tests, CLI shutdown)."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


__all__ = [
    "DEFAULT_DATABASE_URL",
    "DatabasePersistenceError",
    "get_database_url",
    "create_database_engine",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "init_schema",
    "reset_engine",
]
