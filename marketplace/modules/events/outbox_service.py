"""OutboxService: records domain events alongside the state change that caused them."""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.models.enums import EventStatus
from marketplace.models.event_outbox import EventOutbox

logger = logging.getLogger(__name__)


class OutboxService:
    """Manages the event outbox lifecycle (publish, fetch, mark)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def publish_event(
        self,
        event_type: str,
        aggregate_type: str,
        aggregate_id: str,
        payload: dict,
    ) -> EventOutbox:
        """Stage a PENDING event; it commits or rolls back with the caller's transaction."""
        event = EventOutbox(
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=EventStatus.PENDING,
            retry_count=0,
            max_retries=settings.outbox_max_retries,
        )
        self.session.add(event)
        await self.session.flush()
        logger.debug("Outbox event staged: %s %s/%s", event_type, aggregate_type, aggregate_id)
        return event

    async def get_pending_events(self, batch_size: int = 50) -> list[EventOutbox]:
        """Oldest pending events, row-locked; rows held by another relay are skipped."""
        result = await self.session.execute(
            select(EventOutbox)
            .where(EventOutbox.status == EventStatus.PENDING)
            .order_by(EventOutbox.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    @staticmethod
    def mark_completed(event: EventOutbox) -> None:
        event.status = EventStatus.COMPLETED
        event.processed_at = datetime.now(UTC)
        event.last_error = None

    @staticmethod
    def mark_failed(event: EventOutbox, error: str) -> None:
        """Count the failure; the event goes back to PENDING until its retries run out."""
        event.retry_count += 1
        event.last_error = error
        event.status = EventStatus.FAILED if event.retry_count >= event.max_retries else EventStatus.PENDING

    async def purge_completed(self, older_than_days: int = 30) -> int:
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        result = await self.session.execute(
            delete(EventOutbox).where(
                EventOutbox.status == EventStatus.COMPLETED,
                EventOutbox.processed_at < cutoff,
            )
        )
        return result.rowcount or 0
