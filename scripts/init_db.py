#!/usr/bin/env python3
"""Database initialization script"""

import argparse
import asyncio
import sys

from sqlalchemy import text

from tracker.core.database import engine, Base
from tracker.models import (  # noqa: F401
    TrackedItem,
    ChildObservation,
    JobTransition,
    CampaignItem
)


async def init_database(drop: bool = False):
    """Create all tables, optionally dropping them first"""
    print("Initializing database...")

    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    print("Database initialized successfully!")
    print("\nCreated tables:")
    for table in Base.metadata.tables:
        print(f"  - {table}")


async def verify_connection() -> bool:
    print("Verifying database connection...")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except OSError as e:
        print(f"Database connection failed: {e}")
        return False
    print("Database connection verified!")
    return True


async def main(drop: bool):
    if not await verify_connection():
        print("\nPlease ensure PostgreSQL is running and DATABASE_URL is configured correctly.")
        sys.exit(1)

    await init_database(drop=drop)
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--drop", action="store_true", help="drop existing tables first (destroys data)")
    args = parser.parse_args()
    asyncio.run(main(args.drop))
