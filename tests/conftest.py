"""
Pytest configuration and fixtures for testing
"""
import os

# Local HS256 tokens only; settings are read once at import time
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-local-hs256-tokens"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ.pop("AUTH0_ISSUER_BASE_URL", None)
os.environ.pop("AUTH0_AUDIENCE", None)
os.environ.pop("REDIS_URL", None)

import pytest
import httpx
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from auth_utils import create_jwt
from database import Base, get_db

# Create in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine; one shared connection so every session sees the same database
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    future=True,
    poolclass=StaticPool,
)

# Create test session factory
TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture
async def db_tables():
    """Create the entitlement tables before the test and drop them afterwards."""
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        from database_models import Entitlement  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    """Same contract as database.get_db, bound to the test engine."""
    async with TestAsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
async def test_db(db_tables):
    """Session on a fresh in-memory database for each test."""
    async for session in override_get_db():
        yield session


@pytest.fixture
async def client(db_tables):
    """HTTP client bound to the app, with the database swapped for the test engine."""
    from main import app

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(subject: str = "auth0|user-1", email: str = "user@example.com") -> dict:
    return {"Authorization": f"Bearer {create_jwt(subject, email=email, name='Test User')}"}
