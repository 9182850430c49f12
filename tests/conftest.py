"""
Pytest configuration and fixtures.
"""

import os
import uuid
from typing import AsyncGenerator

# Must be set before the settings are first loaded
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.core.database import Base, CrmBase, get_db
from backend.app.core.security import Role, create_access_token
from backend.app.models import ProfileORM, VipCustomerDataORM
from backend.app.services.crm_adapter import MockCrmCustomerSource, get_crm_source

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test, holding both the app and CRM tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(CrmBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Returns the session factory for testing."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def crm_source() -> MockCrmCustomerSource:
    return MockCrmCustomerSource()


@pytest.fixture
def make_profile(db_session: AsyncSession):
    """Insert a profile and return its id."""
    async def _make(with_vip_placeholder: bool = False, **fields) -> str:
        profile = ProfileORM(id=fields.pop("id", str(uuid.uuid4())), **fields)
        if with_vip_placeholder:
            placeholder = VipCustomerDataORM(id=str(uuid.uuid4()), vip_display_name=profile.display_name)
            db_session.add(placeholder)
            profile.vip_customer_data_id = placeholder.id
        db_session.add(profile)
        await db_session.flush()
        return profile.id
    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers for a profile, signed like the identity provider does."""
    def _headers(profile_id: str, role: str = Role.CUSTOMER) -> dict:
        token = create_access_token({"sub": profile_id, "role": role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
async def client(db_session: AsyncSession, crm_source: MockCrmCustomerSource) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with database and CRM dependencies overridden.
    """
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_crm_source] = lambda: crm_source
    app.state.status_cache.clear()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    app.state.status_cache.clear()
