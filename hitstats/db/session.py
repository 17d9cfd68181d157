"""
Database Session Management

This module handles async database connections using SQLAlchemy's async engine.
Uses the database adapter matching DATABASE_URL for backend-specific options.

Key Features:
- Database abstraction: SQLite by default, PostgreSQL via DATABASE_URL
- Async session management: Proper async context management
- Error handling: Automatic rollback on exceptions
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from hitstats.core.setting import settings
from hitstats.db.factory import get_adapter_for_url

db_adapter = get_adapter_for_url(settings.DATABASE_URL)

engine = db_adapter.create_engine(settings.DATABASE_URL)

async_session_maker = async_sessionmaker(
    engine,
    class_=SQLModelAsyncSession,
    expire_on_commit=False,  # Prevents SQLAlchemy from expiring objects after commit
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function for FastAPI to get database session.

    Commits on successful completion, rolls back on any exception.

    Usage in FastAPI:
        @router.get("/endpoint")
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_maker() -> async_sessionmaker:
    """
    Dependency returning the session factory.

    Background tasks run after the request session is closed and
    must open their own session from this factory.
    """
    return async_session_maker
