from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from marketplace.config import settings

engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
    pool_recycle=3600,
    echo=settings.database_echo,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def task_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for Celery tasks.

    Each task body runs under its own ``asyncio.run()`` loop, and pooled
    asyncpg connections cannot cross loops, so this uses a throwaway
    NullPool engine disposed on exit.
    """
    task_engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        async with async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)() as session:
            yield session
    finally:
        await task_engine.dispose()
