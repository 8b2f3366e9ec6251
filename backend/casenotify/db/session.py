"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Using a context manager ensures proper connection cleanup and transaction management.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from casenotify.core.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options for the configured driver; SQLite pools take no size arguments."""
    options: Dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=20)
    return options


# WHY: pool_pre_ping recycles stale connections, which matters because the
# fallback cache only helps if a dead connection fails fast and visibly.
engine = create_async_engine(
    settings.async_database_url,
    **_engine_options(settings.async_database_url),
)

# WHY: expire_on_commit=False prevents lazy-loading issues after commit.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: Each request is one transaction. A rule matrix save writes every
    status inside it, so readers see either the old or the new matrix.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_tables() -> None:
    """Create all tables from model metadata (no migration tooling)."""
    from casenotify.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
