"""
Database connection and session management.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from gymsync.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(bind: Optional[AsyncEngine] = None):
    """Create all tables (development only; production schemas are managed externally)."""
    import gymsync.models  # noqa: F401  populate metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency handing services a factory so each operation owns its transaction."""
    return async_session_factory


@asynccontextmanager
async def transaction(
    factory: async_sessionmaker, db: Optional[AsyncSession] = None
) -> AsyncIterator[AsyncSession]:
    """Open a session + transaction, or join the caller's if one is given.

    Commits on clean exit, rolls back on error.
    """
    if db is not None:
        yield db
        return
    async with factory() as session:
        async with session.begin():
            yield session
