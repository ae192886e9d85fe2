"""
Taskboard Database Session Management.

Single entry point for DB initialisation plus the transactional scope every
request runs in: commit on success, rollback on any error.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from taskboard.db.base import Base

logger = logging.getLogger("taskboard.db.session")

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(db_url: str, echo: bool = False, pool_pre_ping: bool = True) -> Engine:
    """
    Create an engine for `db_url`.

    In-memory SQLite gets a StaticPool so every session shares the single
    connection that holds the database.
    """
    kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": pool_pre_ping}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(db_url, **kwargs)


def init_db(
    db_url: str,
    create_tables: bool = False,
    echo: bool = False,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Initialise the module-level engine and session factory.

    Args:
        db_url:        SQLAlchemy URL.
        create_tables: Run Base.metadata.create_all() (``taskboard init``, tests).
        echo:          SQLAlchemy echo flag.
        pool_pre_ping: SQLAlchemy pool_pre_ping flag.

    Returns:
        The sessionmaker bound to the new engine.
    """
    global _engine, _session_factory

    # Register the model tables on Base.metadata
    from taskboard.db import models  # noqa: F401

    _engine = build_engine(db_url, echo=echo, pool_pre_ping=pool_pre_ping)
    if create_tables:
        Base.metadata.create_all(_engine)
        logger.info("Database tables created")

    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for one unit of work with auto-commit/rollback.

    Usage:
        with session_scope() as session:
            TaskStore(session).list(ctx)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Dispose the engine. Used during shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
