"""Database engine lifecycle and session management."""

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def init_engine(database_url: str, echo: bool = False) -> Engine:
    """Create the process-wide engine and bind the session factory to it."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, echo=echo)
    SessionLocal.configure(bind=_engine)
    logger.info("Database engine initialised for %s", _engine.url.render_as_string())
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine is not initialised; call init_engine() first")
    return _engine


def dispose_engine() -> None:
    """Release pooled connections at shutdown."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all database tables."""
    # Register the mapped classes on Base.metadata before create_all.
    from approval_tracker import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
