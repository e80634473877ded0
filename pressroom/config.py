"""Runtime configuration for authentication, streams and the dashboard."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

FAIL_CLOSED = "fail_closed"
ERROR_FRAME = "error_frame"
INITIAL_FAILURE_MODES = (FAIL_CLOSED, ERROR_FRAME)


def _get_int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:  # pragma: no cover - clearly surface misconfiguration
        raise ValueError(f"Environment variable {name} must be an integer; got {raw!r}") from exc


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number; got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"Environment variable {name} must be positive; got {raw!r}")
    return value


@dataclass(frozen=True)
class AuthSettings:
    """How session tokens are located and verified."""

    jwt_secret: Optional[str]
    jwt_algorithm: str = "HS256"
    cookie_name: str = "token"
    admin_role: str = "ADMIN"
    token_ttl_minutes: int = 60 * 24 * 7


@dataclass(frozen=True)
class StreamSettings:
    """Cadence and failure policy for event-stream sessions."""

    stats_poll_interval: float = 10.0
    notifications_poll_interval: float = 5.0
    tickets_poll_interval: float = 5.0
    heartbeat_interval: float = 15.0
    disconnect_check_interval: float = 1.0
    max_consecutive_failures: Optional[int] = None
    initial_failure_mode: str = FAIL_CLOSED


@dataclass(frozen=True)
class DashboardSettings:
    """Shape of the admin dashboard statistics."""

    timezone: str = "UTC"
    weekday_locale: str = "fa-IR"
    chart_days: int = 7
    latest_limit: int = 5


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    """Return authentication settings derived from the environment."""

    ttl = _get_int_env("PRESSROOM_TOKEN_TTL_MINUTES")
    return AuthSettings(
        jwt_secret=os.getenv("JWT_SECRET") or None,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        cookie_name=os.getenv("PRESSROOM_SESSION_COOKIE", "token"),
        admin_role=os.getenv("PRESSROOM_ADMIN_ROLE", "ADMIN"),
        token_ttl_minutes=ttl if ttl is not None else AuthSettings.token_ttl_minutes,
    )


@lru_cache(maxsize=1)
def get_stream_settings() -> StreamSettings:
    """Return stream cadence settings derived from the environment."""

    max_failures = _get_int_env("PRESSROOM_STREAM_MAX_FAILURES")
    if max_failures is not None and max_failures <= 0:
        max_failures = None
    mode = os.getenv("PRESSROOM_INITIAL_SNAPSHOT_FAILURE", FAIL_CLOSED).strip().lower()
    if mode not in INITIAL_FAILURE_MODES:
        raise ValueError(
            f"PRESSROOM_INITIAL_SNAPSHOT_FAILURE must be one of {INITIAL_FAILURE_MODES}; got {mode!r}"
        )
    return StreamSettings(
        stats_poll_interval=_get_float_env("PRESSROOM_STATS_POLL_SECONDS", 10.0),
        notifications_poll_interval=_get_float_env("PRESSROOM_NOTIFICATIONS_POLL_SECONDS", 5.0),
        tickets_poll_interval=_get_float_env("PRESSROOM_TICKETS_POLL_SECONDS", 5.0),
        heartbeat_interval=_get_float_env("PRESSROOM_HEARTBEAT_SECONDS", 15.0),
        disconnect_check_interval=_get_float_env("PRESSROOM_DISCONNECT_CHECK_SECONDS", 1.0),
        max_consecutive_failures=max_failures,
        initial_failure_mode=mode,
    )


@lru_cache(maxsize=1)
def get_dashboard_settings() -> DashboardSettings:
    """Return dashboard settings derived from the environment."""

    return DashboardSettings(
        timezone=os.getenv("PRESSROOM_DASHBOARD_TIMEZONE", "UTC"),
        weekday_locale=os.getenv("PRESSROOM_WEEKDAY_LOCALE", "fa-IR"),
    )


__all__ = [
    "AuthSettings",
    "StreamSettings",
    "DashboardSettings",
    "FAIL_CLOSED",
    "ERROR_FRAME",
    "get_auth_settings",
    "get_stream_settings",
    "get_dashboard_settings",
]
