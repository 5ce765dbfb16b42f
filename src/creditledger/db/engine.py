"""Async database engine configuration."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from creditledger.settings import Settings, get_settings


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create the async engine; the caller owns and disposes it."""
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url_async,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.debug,
    )
