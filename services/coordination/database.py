"""
Database Configuration Module
Async engine, session factory and declarative base
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from conflict_config import DATABASE_URL

# Base for models
Base = declarative_base()


def create_engine_for(url: str) -> AsyncEngine:
    """Create async engine; pooling options only apply to server databases."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,              # Verify connections before use
        pool_recycle=3600,               # Recycle connections after 1 hour
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


engine: AsyncEngine | None = create_engine_for(DATABASE_URL) if DATABASE_URL else None
AsyncSessionLocal = create_session_factory(engine) if engine is not None else None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for the configured DATABASE_URL."""
    if AsyncSessionLocal is None:
        raise ValueError("DATABASE_URL environment variable is not set")
    return AsyncSessionLocal


async def create_schema(bind: AsyncEngine) -> None:
    """Create missing tables; existing ones are left untouched."""
    import models  # noqa: F401  registers mappers on Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_connections():
    """
    Gracefully close all database connections.
    Call this on application shutdown.
    """
    if engine is not None:
        await engine.dispose()
