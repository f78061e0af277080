from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from src.db.models.base import Base


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for a connection string.

    SQLite connections may be used from worker threads (mastery persistence
    runs via asyncio.to_thread); in-memory SQLite shares a single connection.
    """
    kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Get the database engine for the configured database_url."""
    settings = get_settings()
    return build_engine(settings.database_url, echo=settings.log_level == "DEBUG")


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory bound to the given (or configured) engine."""
    return sessionmaker(bind=engine or get_engine(), autocommit=False, autoflush=False)


def init_db(engine: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables initialized")


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
