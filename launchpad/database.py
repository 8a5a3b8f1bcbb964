import asyncio
import logging
from contextlib import contextmanager
from typing import Any
from typing import Callable
from typing import TypeVar

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from launchpad.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    if "sqlite" in db_url:
        # Sessions are handed to worker threads via asyncio.to_thread.
        connect_args.setdefault("check_same_thread", False)
        if ":memory:" not in db_url:
            # Driver autocommit; each statement is its own transaction.
            connect_args["isolation_level"] = None
        connect_args["timeout"] = 30
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 300)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps attributes readable after commit.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


_default_engine: Engine | None = None
_default_session_factory: sessionmaker | None = None


def get_engine() -> Engine:
    """Return the process-wide engine built from ``DATABASE_URL``."""
    global _default_engine
    if _default_engine is None:
        _default_engine = make_engine(get_settings().database_url)
    return _default_engine


def get_session_factory() -> sessionmaker:
    """Get the default session factory for the application."""
    global _default_session_factory
    if _default_session_factory is None:
        _default_session_factory = make_sessionmaker(get_engine())
    return _default_session_factory


@contextmanager
def db_session(session_factory: Any = None):
    """Context manager for database sessions.

    Commits on success, rolls back on exception, always closes.

    Usage:
        with db_session() as db:
            crud.ensure_onboarding_status(db, "loc_123")
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


async def run_in_session(session_factory: sessionmaker, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run blocking session work ``fn(db, *args)`` on a worker thread.

    The session is opened, committed and closed inside the worker so the
    event loop never waits on the database driver.
    """

    def _work() -> T:
        with db_session(session_factory) as db:
            return fn(db, *args, **kwargs)

    return await asyncio.to_thread(_work)


def initialize_database(engine: Engine = None) -> None:
    """Create every table registered on :data:`Base`.

    Args:
        engine: Optional engine to use; defaults to :func:`get_engine`.
    """
    # Register models with the metadata before create_all.
    from launchpad.models import models  # noqa: F401

    target = engine or get_engine()
    Base.metadata.create_all(bind=target)
    logger.info("database.initialize tables=%s", sorted(Base.metadata.tables))
