"""Session-token authentication for the stream endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

import jwt
import structlog
from fastapi import HTTPException, Request, status
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from pressroom.config import AuthSettings, get_auth_settings
from pressroom.db.models import User
from pressroom.db.session import run_in_session
from pressroom.time_utils import utc_now

logger = structlog.get_logger(__name__)

# Password hashing context using bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a plaintext password for accounts seeded by the bootstrap script."""

    return pwd_context.hash(password)


class InvalidSessionError(Exception):
    """Raised when a session token is missing, malformed, expired or unverifiable."""


@dataclass(frozen=True)
class Subject:
    """The authenticated principal a stream is scoped to."""

    id: int
    role: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


def create_session_token(
    user_id: int,
    *,
    expires_minutes: int | None = None,
    settings: AuthSettings | None = None,
) -> str:
    """Create a signed session token carrying ``userId``."""

    settings = settings or get_auth_settings()
    if not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET is not configured")
    minutes = expires_minutes if expires_minutes is not None else settings.token_ttl_minutes
    payload = {
        "userId": int(user_id),
        "exp": utc_now() + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _normalise_token(candidate: str | None) -> str | None:
    if not candidate:
        return None
    value = candidate.strip()
    if not value:
        return None
    if value.lower().startswith("bearer "):
        _, _, remainder = value.partition(" ")
        value = remainder.strip()
    return value or None


def extract_token(request: Request, settings: AuthSettings | None = None) -> str | None:
    """Return the session token from the cookie, falling back to a bearer header."""

    settings = settings or get_auth_settings()
    token = _normalise_token(request.cookies.get(settings.cookie_name))
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return _normalise_token(auth_header)
    return None


def _parse_user_id(claim: Any) -> Optional[int]:
    if isinstance(claim, bool):
        return None
    if isinstance(claim, int):
        return claim if claim > 0 else None
    if isinstance(claim, str):
        try:
            value = int(claim.strip())
        except ValueError:
            return None
        return value if value > 0 else None
    return None


def decode_session_token(token: str, settings: AuthSettings | None = None) -> int:
    """Verify *token* and return the ``userId`` it carries."""

    settings = settings or get_auth_settings()
    if not settings.jwt_secret:
        logger.error("jwt_secret_missing")
        raise InvalidSessionError("JWT_SECRET is not configured")
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as exc:
        raise InvalidSessionError(str(exc)) from exc
    user_id = _parse_user_id(payload.get("userId"))
    if user_id is None:
        raise InvalidSessionError("Invalid token payload")
    return user_id


def resolve_admin(session: Session, user_id: int, settings: AuthSettings | None = None) -> Optional[Subject]:
    """Return the admin subject for *user_id*, or ``None`` if it is not an admin."""

    settings = settings or get_auth_settings()
    row = session.execute(
        select(User.id, User.role, User.name, User.email).where(User.id == user_id)
    ).first()
    if row is None or row.role != settings.admin_role:
        return None
    return Subject(id=row.id, role=row.role, name=row.name, email=row.email)


def require_user_subject(request: Request) -> Subject:
    """Dependency resolving the signed-in user or answering 401."""

    token = extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token not found",
        )
    try:
        user_id = decode_session_token(token)
    except InvalidSessionError as exc:
        logger.info("user_session_rejected", path=request.url.path, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return Subject(id=user_id)


async def require_admin_subject(request: Request) -> Subject:
    """Dependency resolving an administrator or answering 403.

    The role lookup runs in its own short session so no pooled connection is
    held for the lifetime of a streaming response.
    """

    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    try:
        user_id = decode_session_token(token)
    except InvalidSessionError as exc:
        logger.info("admin_session_rejected", path=request.url.path, error=str(exc))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    subject = await run_in_threadpool(run_in_session, resolve_admin, user_id)
    if subject is None:
        logger.info("admin_session_insufficient_role", path=request.url.path, user_id=user_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return subject


__all__ = [
    "InvalidSessionError",
    "Subject",
    "create_session_token",
    "decode_session_token",
    "hash_password",
    "extract_token",
    "resolve_admin",
    "require_user_subject",
    "require_admin_subject",
]
