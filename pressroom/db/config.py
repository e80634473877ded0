"""Where the backing store lives and how the engine connects to it."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict

from platformdirs import user_data_dir

from pressroom.config import _get_int_env

APP_NAME = "Pressroom"
DB_FILENAME = "pressroom.db"

# Pool keyword -> environment variable.
_POOL_ENV = {
    "pool_size": "DB_POOL_SIZE",
    "max_overflow": "DB_MAX_OVERFLOW",
    "pool_timeout": "DB_POOL_TIMEOUT",
}


@dataclass(frozen=True)
class DatabaseSettings:
    """Resolved store location plus engine tuning."""

    url: str
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql", "postgres"))

    def engine_options(self) -> Dict[str, object]:
        """Return keyword arguments for :func:`sqlalchemy.create_engine`."""

        options: Dict[str, object] = {"echo": self.echo, "future": True}
        for option, env_name in _POOL_ENV.items():
            value = _get_int_env(env_name)
            if value is not None:
                options[option] = value

        if self.is_sqlite:
            # Stream snapshots run in worker threads.
            options["connect_args"] = {"check_same_thread": False}
        elif self.is_postgres:
            options["pool_pre_ping"] = True
            options["connect_args"] = _postgres_connect_args()
        return options


def _postgres_connect_args() -> Dict[str, object]:
    server_settings = ["timezone=UTC"]
    statement_timeout = _get_int_env("STATEMENT_TIMEOUT_MS")
    if statement_timeout is not None:
        server_settings.append(f"statement_timeout={statement_timeout}")
    connect_args: Dict[str, object] = {
        "options": " ".join(f"-c {setting}" for setting in server_settings)
    }
    connect_timeout = _get_int_env("PGCONNECT_TIMEOUT")
    if connect_timeout is not None:
        connect_args["connect_timeout"] = connect_timeout
    return connect_args


def _sqlite_file(override: str | None) -> Path:
    if override:
        path = Path(override).expanduser()
        if path.is_dir():
            path = path / DB_FILENAME
    else:
        path = Path(user_data_dir(APP_NAME, APP_NAME)) / DB_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _with_psycopg_driver(url: str) -> str:
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    """Return the active database settings derived from the environment."""

    echo = os.getenv("DB_ECHO", "0").lower() in {"1", "true", "yes"}
    url = os.getenv("PRESSROOM_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url:
        return DatabaseSettings(url=_with_psycopg_driver(url), echo=echo)
    db_path = _sqlite_file(os.getenv("PRESSROOM_DB_PATH"))
    return DatabaseSettings(url=f"sqlite:///{db_path}", echo=echo)


__all__ = ["APP_NAME", "DatabaseSettings", "get_database_settings"]
