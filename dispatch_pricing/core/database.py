"""
Async SQLAlchemy engine and session factory.

The engine is created once at module import time.  The session factory
produces lightweight ``AsyncSession`` instances; the SQL-backed store and
audit sink open one short-lived session per collaborator call.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dispatch_pricing.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
