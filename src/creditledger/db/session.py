"""Async session management."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

T = TypeVar("T")

SessionFactory = Callable[[], AsyncSession]


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def db_session(factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """Async context manager yielding an AsyncSession."""
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def run_in_tx(
    session: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """Run a function inside a transaction, committing on success."""
    async with session.begin():
        result = await fn(session)
    return result
