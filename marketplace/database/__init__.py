from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.database.engine import async_session, engine, task_session
from marketplace.database.session import get_db

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "engine",
    "task_session",
    "get_db",
]
