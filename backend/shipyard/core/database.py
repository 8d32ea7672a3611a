"""
Database connection and session management.
"""
from typing import Any, Dict
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

from shipyard.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Engine keyword arguments for the given database URL.

    Pool sizing and statement timeouts only apply to PostgreSQL; SQLite
    (used for single-node installs and tests) keeps the driver defaults.
    """
    if not database_url.startswith("postgresql"):
        return {"echo": settings.DEBUG}
    return {
        "echo": settings.DEBUG,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_timeout": 30,  # Wait max 30s for connection from pool
        "pool_recycle": 1800,  # Recycle connections after 30 minutes
        "connect_args": {
            "command_timeout": 60,
            "server_settings": {
                "statement_timeout": "60000",  # milliseconds
            },
        },
    }


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine configured for ``database_url``."""
    return create_async_engine(database_url, **engine_options(database_url))


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """Create an async session factory bound to ``bind``."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = create_engine(settings.DATABASE_URL)

async_session_maker = create_session_maker(engine)


# Base class for models
class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = MetaData(schema=settings.DB_SCHEMA or None)


async def init_models(bind: AsyncEngine = None) -> None:
    """Create all tables that do not exist yet."""
    # Registers the tables on Base.metadata
    import shipyard.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
