"""Database helpers for Pressroom."""

from __future__ import annotations

from .config import DatabaseSettings, get_database_settings
from .models import Base
from .session import (
    bound_engine,
    configure_session_factory,
    dispose_engine,
    get_engine,
    get_session,
    get_session_factory,
    initialise_schema,
    run_in_session,
    session_scope,
)

__all__ = [
    "Base",
    "DatabaseSettings",
    "get_database_settings",
    "bound_engine",
    "configure_session_factory",
    "dispose_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "initialise_schema",
    "run_in_session",
    "session_scope",
]
