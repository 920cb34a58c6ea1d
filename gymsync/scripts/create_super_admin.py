"""
Script to create (or promote) a super-admin with a password.

    python -m gymsync.scripts.create_super_admin --email admin@example.com --password '...'
"""

import argparse
import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from gymsync.core.config import get_settings
from gymsync.core.database import async_session_factory, init_db, transaction
from gymsync.core.logging import configure_logging
from gymsync.core.security import hash_password
from gymsync.models.user import User
from gymsync.schemas.common import UserType
from gymsync.services.credentials import normalize_email

log = structlog.get_logger()


async def create_super_admin(
    email: str,
    password: str,
    *,
    factory: Optional[async_sessionmaker] = None,
    create_tables: bool = False,
) -> User:
    if create_tables:
        await init_db()

    email = normalize_email(email)
    password_hash = await asyncio.to_thread(hash_password, password)
    async with transaction(factory or async_session_factory) as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(
                email=email,
                name=email.split("@")[0],
                password_hash=password_hash,
                user_type=UserType.SUPER_ADMIN.value,
            )
            log.info("super_admin.created", email=email)
        else:
            user.user_type = UserType.SUPER_ADMIN.value
            user.password_hash = password_hash
            user.is_active = True
            log.info("super_admin.promoted", email=email)
        session.add(user)
        await session.flush()
    return user


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a GymSync super-admin user.")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--password", required=True, help="Password for the user")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first (development)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, "console")
    asyncio.run(create_super_admin(args.email, args.password, create_tables=args.create_tables))


if __name__ == "__main__":
    main()
