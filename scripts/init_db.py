"""Create the schema and, optionally, the first administrator account.

Usage:
    python scripts/init_db.py
    python scripts/init_db.py admin <email> <full name...>

The administrator password is read from ``ADMIN_PASSWORD``.
"""

import asyncio
import os
import sys

from app.config import settings
from app.core.exceptions import AppException
from app.database import Database
from app.models import metadata
from app.schemas.users import UserCreate, UserRole
from app.services.directory_service import DirectoryService


async def init_db(database: Database) -> None:
    """Create all tables, indexes and overlap guards."""
    async with database.engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    print("✓ Database initialized successfully!")


async def create_administrator(database: Database, email: str, full_name: str) -> None:
    """
    Create an administrator with the password from ``ADMIN_PASSWORD``.

    Does nothing when an administrator already exists.
    """
    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        print("✗ ADMIN_PASSWORD is not set", file=sys.stderr)
        sys.exit(1)

    async with database.session_factory() as session:
        directory = DirectoryService(session)
        existing = await directory.count_users(UserRole.ADMINISTRATOR)
        if existing:
            print(f"✓ {existing} administrator(s) already present, skipping")
            return

        try:
            user = await directory.create_user(
                UserCreate(
                    full_name=full_name,
                    email=email,
                    password=password,
                    role=UserRole.ADMINISTRATOR,
                )
            )
        except AppException as e:
            print(f"✗ Could not create administrator: {e.message}", file=sys.stderr)
            sys.exit(1)

    print(f"✓ Administrator {user['email']} created ({user['id']})")


async def main(argv: list[str]) -> None:
    database = Database.from_settings(settings)
    try:
        await init_db(database)
        if argv and argv[0] == "admin":
            if len(argv) < 3:
                print("Usage: python scripts/init_db.py admin <email> <full name...>")
                sys.exit(2)
            await create_administrator(database, argv[1], " ".join(argv[2:]))
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
