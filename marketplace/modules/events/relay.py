"""OutboxRelay: drains pending outbox events into the registered handlers."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.modules.events.handlers import EventHandlerRegistry
from marketplace.modules.events.outbox_service import OutboxService

logger = logging.getLogger(__name__)


class OutboxRelay:
    """Processes one batch of pending events inside the caller's session.

    Rows are claimed with ``FOR UPDATE SKIP LOCKED`` so several workers can
    relay concurrently. Each event's handlers run in a SAVEPOINT: a failing
    handler rolls back only its own writes, and the event is retried on a
    later batch until its retry budget is spent.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.outbox = OutboxService(session)

    async def process_batch(self, batch_size: int = 50) -> dict:
        processed = 0
        failed = 0

        events = await self.outbox.get_pending_events(batch_size)
        for event in events:
            try:
                async with self.session.begin_nested():
                    handled_by = await EventHandlerRegistry.dispatch(self.session, event)
            except Exception as exc:
                logger.exception(
                    "Failed to relay event %s (type=%s, attempt %d)",
                    event.id, event.event_type, event.retry_count + 1,
                )
                self.outbox.mark_failed(event, str(exc))
                failed += 1
                continue

            self.outbox.mark_completed(event)
            processed += 1
            logger.debug("Relayed %s to %s", event.event_type, handled_by or "no handlers")

        await self.session.flush()
        return {"processed": processed, "failed": failed}
