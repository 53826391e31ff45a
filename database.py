from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config.settings import settings, IS_PRODUCTION

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./sql_app.db"


def resolve_database_url(url: Optional[str], production: bool = False) -> str:
    """
    Normalize DATABASE_URL to an async driver URL.

    Plain postgres URLs (as handed out by hosting providers) are routed to
    asyncpg. SQLite is refused in production.
    """
    if production and (not url or "sqlite" in url.lower()):
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")
    url = url or DEFAULT_DATABASE_URL
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def build_engine(url: str) -> AsyncEngine:
    options = {"echo": False, "future": True}
    if not url.startswith("sqlite"):
        # Drop connections the server closed while idle
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


DATABASE_URL = resolve_database_url(settings.database_url, production=IS_PRODUCTION)

engine = build_engine(DATABASE_URL)

# Declarative base for ORM tables
Base = declarative_base()

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db():
    """Create the entitlement tables if missing. Called on application startup."""
    async with engine.begin() as conn:
        from database_models import Entitlement  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    """Close pooled connections. Called on application shutdown."""
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped database session.

    Commits when the request succeeds and rolls back when it raises. Writes
    that must survive a failed request (trial expiry before a 403) are
    committed by the repository itself.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
