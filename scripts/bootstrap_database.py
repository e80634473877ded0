#!/usr/bin/env python3
"""Bootstrap the Pressroom database and seed an administrator account."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import select

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pressroom import auth  # noqa: E402
from pressroom.db import get_database_settings, initialise_schema, session_scope  # noqa: E402
from pressroom.db.models import User, UserRole  # noqa: E402


DEFAULT_ADMIN = {
    "email": "admin@pressroom.example",
    "password": "Admin123!",
    "name": "Site Administrator",
}


def ensure_admin(email: str, password: str, name: str) -> int:
    """Create the administrator if missing, or promote an existing account."""

    with session_scope() as session:
        user = session.scalars(select(User).where(User.email == email)).first()
        if user is None:
            user = User(
                email=email,
                name=name,
                password_hash=auth.hash_password(password),
                role=UserRole.ADMIN.value,
            )
            session.add(user)
            session.flush()
        elif user.role != UserRole.ADMIN.value:
            user.role = UserRole.ADMIN.value
            session.flush()
        return int(user.id)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--admin-email",
        default=os.getenv("PRESSROOM_ADMIN_EMAIL", DEFAULT_ADMIN["email"]),
    )
    parser.add_argument(
        "--admin-password",
        default=os.getenv("PRESSROOM_ADMIN_PASSWORD", DEFAULT_ADMIN["password"]),
    )
    parser.add_argument("--admin-name", default=DEFAULT_ADMIN["name"])
    parser.add_argument(
        "--print-token",
        action="store_true",
        help="Print a session token for the administrator (requires JWT_SECRET).",
    )
    args = parser.parse_args(argv)

    settings = get_database_settings()
    initialise_schema()
    admin_id = ensure_admin(args.admin_email, args.admin_password, args.admin_name)
    print(f"Schema ready at {settings.url}; administrator id {admin_id}")
    if args.print_token:
        print(auth.create_session_token(admin_id))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
