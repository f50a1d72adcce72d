"""SQLAlchemy base configuration and engine management."""

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from feedback_triage.config import get_config


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


_async_engine = None


def get_async_engine():
    """Get or create async database engine."""
    global _async_engine
    if _async_engine is None:
        config = get_config()
        url = config.database.connection_string
        options = {"echo": config.environment == "dev", "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            options.update(pool_size=5, max_overflow=10)
        _async_engine = create_async_engine(url, **options)
    return _async_engine


def get_async_session() -> async_sessionmaker[AsyncSession]:
    """Get async session factory."""
    engine = get_async_engine()
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
