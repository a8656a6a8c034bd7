"""
Logistics Decision Engine Database Session Management

Async SQLAlchemy engine and session factory for the decision audit log.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings


def create_engine(database_url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    settings = get_settings()
    url = database_url or settings.database_url
    kwargs = {
        "echo": settings.database_echo if echo is None else echo,
        "pool_pre_ping": True,
    }
    # SQLite pools do not take sizing arguments
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=20, max_overflow=10)
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""

    pass


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table on the engine. Used for SQLite and first-run setups."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
