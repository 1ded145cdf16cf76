#!/usr/bin/env python3
"""
Create the marketplace schema (tables, partial unique indexes, constraints).

Existing tables are left untouched, so the script can be re-run safely.
"""
import asyncio
import sys

from tcgmarket.core.config import get_settings
from tcgmarket.core.database import close_engine, create_schema


async def run_migration() -> None:
    settings = get_settings()
    target = settings.DATABASE_URL.split("@")[-1] if "@" in settings.DATABASE_URL else settings.DATABASE_URL
    print(f"Creating schema on: {target}")
    try:
        await create_schema()
    finally:
        await close_engine()
    print("Schema ready")


if __name__ == "__main__":
    try:
        asyncio.run(run_migration())
    except Exception as e:
        print(f"Migration failed: {e}")
        sys.exit(1)
