"""Database connection and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from enforcement.config import get_settings

settings = get_settings()

# Pool sizing only applies to the PostgreSQL pool
engine_options = {"echo": settings.api_debug, "pool_pre_ping": True}
if settings.database_url.startswith("postgresql"):
    engine_options.update(pool_size=10, max_overflow=20)

# Create async engine
engine = create_async_engine(settings.database_url, **engine_options)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the session factory for work that outlives a request."""
    return async_session_factory
