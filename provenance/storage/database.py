"""Database engine and session management."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from provenance.storage.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, pool_size: int = 10) -> Engine:
    """Create an engine for the configured database.

    In-memory SQLite shares one connection so every session sees the same
    tables.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_size=pool_size,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def init_db(engine: Engine) -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(engine)
    logger.debug("Database tables ensured")


@lru_cache(maxsize=8)
def get_session_factory(database_url: str, pool_size: int = 10) -> sessionmaker[Session]:
    """Build (once per URL) a session factory with tables in place."""
    engine = create_db_engine(database_url, pool_size)
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Create and manage a database session.

    Commits on success, rolls back on error.

    Yields:
        Database session
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
