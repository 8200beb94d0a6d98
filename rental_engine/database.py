"""
Database configuration with SQLAlchemy (async)
PostgreSQL via asyncpg in production, SQLite via aiosqlite for local dev and tests
"""

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import DATABASE_URL, DATABASE_ECHO


def build_engine(url: str = DATABASE_URL):
    """Create the async engine; pool sizing only applies to server databases."""
    engine_kwargs = {"echo": DATABASE_ECHO, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=20,
            max_overflow=30,
            pool_recycle=3600,
            connect_args={"server_settings": {"application_name": "rental_engine"}}
            if url.startswith("postgresql+asyncpg") else {}
        )
    return create_async_engine(url, **engine_kwargs)


# Create async engine
engine = build_engine()

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for all models
Base = declarative_base()


# Dependency for FastAPI
async def get_session():
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# Initialize database
async def init_db(bind=None):
    """Create all tables"""
    # Importing the models registers them on Base.metadata
    from . import models_postgres  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Close database connections
async def close_db():
    """Close database connections"""
    await engine.dispose()
