from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from marketplace.database.engine import async_session
from marketplace.exceptions import ConflictException


async def flush_or_conflict(session: AsyncSession) -> None:
    """Flush, surfacing optimistic-lock version mismatches as 409s."""
    try:
        await session.flush()
    except StaleDataError as exc:
        raise ConflictException(
            "The order was modified concurrently, please reload and retry"
        ) from exc


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session.

    The request is the unit of work: commit when the handler returns,
    roll back when it raises.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
