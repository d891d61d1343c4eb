#!/usr/bin/env python3
"""Create a role (if missing) and a staff user in the credential store.

Usage:
    python scripts/create_user.py --email admin@vipbar.com --role admin --full-name "Bar Admin"
    python scripts/create_user.py --email cajero@vipbar.com --role cashier \
        --permissions view_products,process_payments,view_members

The password is read from the terminal and stored as an Argon2id hash.
"""

import argparse
import asyncio
import getpass
import sys

from sqlalchemy import select

from vipbar.core.config import get_settings
from vipbar.core.database import create_engine, create_session_maker
from vipbar.models import SystemUser, UserRole
from vipbar.services.credential_store import hash_password
from vipbar.services.validation import MAX_PASSWORD_LENGTH, MIN_PASSWORD_LENGTH


async def create_user(
    email: str,
    password: str,
    role_name: str,
    full_name: str,
    permissions: list[str],
) -> None:
    settings = get_settings()
    engine = create_engine(settings)
    session_maker = create_session_maker(engine)

    try:
        async with session_maker() as session:
            existing = await session.execute(select(SystemUser).where(SystemUser.email == email))
            if existing.scalar_one_or_none() is not None:
                print(f"ERROR: a user with email {email} already exists")
                sys.exit(1)

            role = (
                await session.execute(select(UserRole).where(UserRole.name == role_name))
            ).scalar_one_or_none()
            if role is None:
                role = UserRole(
                    name=role_name,
                    display_name=role_name.capitalize(),
                    permissions={name: True for name in permissions},
                )
                session.add(role)
                await session.flush()
                print(f"Created role {role_name} with {len(permissions)} permissions")

            session.add(
                SystemUser(
                    email=email,
                    full_name=full_name,
                    password_hash=hash_password(password),
                    role_id=role.id,
                )
            )
            await session.commit()
            print(f"Created user {email} with role {role_name}")
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Create a VIP Bar staff user")
    parser.add_argument("--email", required=True)
    parser.add_argument("--role", required=True, help="Role name, e.g. admin, manager, cashier")
    parser.add_argument("--full-name", default="")
    parser.add_argument(
        "--permissions",
        default="",
        help="Comma-separated permissions for a new role (ignored if the role exists)",
    )
    args = parser.parse_args()

    if not get_settings().database_url:
        print("ERROR: set DATABASE_URL")
        sys.exit(1)

    password = getpass.getpass("Password: ")
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        print(f"ERROR: password must be {MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters")
        sys.exit(1)
    if password != getpass.getpass("Repeat password: "):
        print("ERROR: passwords do not match")
        sys.exit(1)

    permissions = [p.strip() for p in args.permissions.split(",") if p.strip()]
    asyncio.run(create_user(args.email.strip().lower(), password, args.role, args.full_name, permissions))


if __name__ == "__main__":
    main()
