"""Database connection and session management.

Two databases are in play: the application database (profiles, identity
mappings, VIP data) and the CRM database, which this service only reads.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config import get_settings

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": settings.debug}

    # SSL Configuration
    if settings.db_ssl_mode == "require":
        kwargs["connect_args"] = {"ssl": "require"}

    if "postgresql" in url:
        kwargs.update({
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_pre_ping": True,
        })
    return kwargs


# Application database
engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# CRM database (read-only from this service)
crm_engine = create_async_engine(settings.crm_database_url, **_engine_kwargs(settings.crm_database_url))

crm_session_maker = async_sessionmaker(
    crm_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for application database models."""
    pass


class CrmBase(DeclarativeBase):
    """Base class for CRM database models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
