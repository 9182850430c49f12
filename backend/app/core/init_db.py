"""
Database initialization script.

Creates the application schema, and optionally the CRM tables for local
development where no real CRM database is reachable.
Run this to initialize a fresh database.
"""

import asyncio

from backend.app.core.database import Base, CrmBase, crm_engine, engine
from backend.app import models  # noqa: F401  (registers tables on Base/CrmBase)


async def init_database(include_crm: bool = False):
    """Create all application tables, plus CRM tables when asked."""
    print("📦 Creating application tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if include_crm:
        print("📦 Creating local CRM tables...")
        async with crm_engine.begin() as conn:
            await conn.run_sync(CrmBase.metadata.create_all)

    await engine.dispose()
    await crm_engine.dispose()
    print("✅ Databases initialized successfully!")


async def drop_all_tables():
    """Drop all application tables (use with caution!)."""
    async with engine.begin() as conn:
        print("⚠️ Dropping all tables...")
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
    print("✅ All tables dropped.")


if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1 and sys.argv[1] == "--drop":
        print("⚠️ WARNING: This will drop all tables!")
        confirm = input("Type 'yes' to confirm: ")
        if confirm == "yes":
            asyncio.run(drop_all_tables())
        else:
            print("Aborted.")
    else:
        asyncio.run(init_database(include_crm="--with-crm" in sys.argv))
