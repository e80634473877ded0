"""Engine and session factory for the backing store.

The engine is built lazily from :func:`get_database_settings` so importing the
application never touches the filesystem.  Tests swap the factory with
:func:`configure_session_factory`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import get_database_settings
from .models import Base

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _create_engine() -> Engine:
    settings = get_database_settings()
    engine = create_engine(settings.url, **settings.engine_options())

    if settings.is_sqlite:

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):  # type: ignore[override]
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA foreign_keys=ON")
            finally:
                cursor.close()

    return engine


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""

    global _engine
    if _engine is None:
        _engine = _create_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the active session factory."""

    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False, future=True
        )
    return _session_factory


def configure_session_factory(factory: Optional[sessionmaker]) -> None:
    """Force the session factory to *factory* (used in tests); ``None`` resets."""

    global _session_factory
    _session_factory = factory


def bound_engine() -> Engine:
    """Return the engine the active session factory is bound to."""

    bind = get_session_factory().kw.get("bind")
    return bind if bind is not None else get_engine()


def initialise_schema(engine: Optional[Engine] = None) -> None:
    """Create any missing tables."""

    Base.metadata.create_all(engine or bound_engine())


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""

    session: Session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_in_session(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call ``fn(session, *args, **kwargs)`` inside a fresh session scope."""

    with session_scope() as session:
        return fn(session, *args, **kwargs)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a SQLAlchemy session."""

    session: Session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    """Release pooled connections held by the engine."""

    global _engine
    if _engine is not None:
        try:
            _engine.dispose()
        except Exception:  # pragma: no cover
            LOGGER.warning("engine_dispose_failed", exc_info=True)
        _engine = None


__all__ = [
    "get_engine",
    "get_session_factory",
    "configure_session_factory",
    "bound_engine",
    "initialise_schema",
    "session_scope",
    "run_in_session",
    "get_session",
    "dispose_engine",
]
