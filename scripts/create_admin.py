#!/usr/bin/env python3
"""
Create an approved Admin account.

Self-registration can be closed to Admins (SECURITY_ALLOW_ADMIN_SIGNUP=false),
so the first administrator of a deployment is created here. Uses the same
database settings as the API server.

Usage:
    python scripts/create_admin.py --name "Plant Admin" --email admin@plant.io
    python scripts/create_admin.py --name "Plant Admin" --email admin@plant.io --password '...'
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

MIN_PASSWORD_LENGTH = 8


async def create_admin(name: str, email: str, password: str) -> int:
    from database import get_db_context, init_database, shutdown_database
    from db.models import User
    from schemas.security import UserRole
    from services.auth_service import get_auth_service
    from services.user_service import UserService

    await init_database()
    try:
        async with get_db_context() as db:
            users = UserService(db)
            if await users.get_by_email(email) is not None:
                print(f"Error: a user with email {email} already exists", file=sys.stderr)
                return 1
            user = await users.add(User(
                name=name,
                email=email.lower(),
                password_hash=await get_auth_service().hash_password(password),
                role=UserRole.ADMIN,
                approved=True,
                active=True,
            ))
            print(f"Created Admin #{user.id} <{user.email}>")
            return 0
    finally:
        await shutdown_database()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create an approved Plantwatch Admin account")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--password", help="Password (prompted when omitted)")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Error: password must be at least {MIN_PASSWORD_LENGTH} characters", file=sys.stderr)
        return 1

    return asyncio.run(create_admin(args.name.strip(), args.email.strip(), password))


if __name__ == "__main__":
    sys.exit(main())
