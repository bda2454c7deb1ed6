"""Database connection and session management"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from agentchat.db.models import Base

logger = logging.getLogger(__name__)


def create_engine_for(database_url: str, debug: bool = False) -> AsyncEngine:
    """Build the async engine for a connection string."""
    if database_url.startswith("sqlite"):
        # SQLite configuration for development and tests
        return create_async_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=debug,
        )
    # PostgreSQL (asyncpg)
    return create_async_engine(
        database_url,
        echo=debug,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def drop_db(engine: AsyncEngine):
    """Drop all database tables (for testing)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
