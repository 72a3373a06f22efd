"""Daily sequential order identifiers: ODR + YYYYMMDD + 2 random chars + 4-digit sequence."""

from __future__ import annotations

import logging
import secrets
import string
from abc import ABC, abstractmethod
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.exceptions import OrderIdUnavailableException
from marketplace.models.order_counter import OrderCounter

logger = logging.getLogger(__name__)

ORDER_ID_PREFIX = "ODR"
_RANDOM_ALPHABET = string.ascii_uppercase + string.digits


class OrderSequence(ABC):
    """Source of per-day, strictly increasing sequence numbers."""

    @abstractmethod
    async def next_sequence(self, date_key: str) -> int:
        """Atomically increment and return the counter for ``date_key``."""


class PostgresOrderSequence(OrderSequence):
    """Counter row per day, created on first use and bumped in one statement.

    Runs inside the caller's transaction, so a failed order creation also
    discards the increment.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_sequence(self, date_key: str) -> int:
        stmt = (
            insert(OrderCounter)
            .values(date_key=date_key, seq=1)
            .on_conflict_do_update(
                index_elements=[OrderCounter.date_key],
                set_={"seq": OrderCounter.seq + 1},
            )
            .returning(OrderCounter.seq)
        )
        try:
            result = await self.db.execute(stmt)
            seq = result.scalar_one()
        except SQLAlchemyError as exc:
            logger.error("Order counter increment failed for %s: %s", date_key, exc)
            raise OrderIdUnavailableException(
                "Unable to allocate an order id, please retry"
            ) from exc
        return seq


def format_date_key(now: datetime | None = None) -> str:
    """YYYYMMDD in the marketplace timezone."""
    tz = ZoneInfo(settings.order_id_timezone)
    moment = now.astimezone(tz) if now is not None else datetime.now(tz)
    return moment.strftime("%Y%m%d")


def random_suffix(length: int = 2) -> str:
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def compose_order_id(date_key: str, seq: int, suffix: str | None = None) -> str:
    return f"{ORDER_ID_PREFIX}{date_key}{suffix or random_suffix()}{seq:04d}"


def compose_sub_order_id(order_id: str, index: int) -> str:
    """``index`` is the 0-based position of the vendor group."""
    return f"{order_id}-V{index + 1:02d}"


async def generate_order_id(sequence: OrderSequence, now: datetime | None = None) -> str:
    date_key = format_date_key(now)
    seq = await sequence.next_sequence(date_key)
    return compose_order_id(date_key, seq)
